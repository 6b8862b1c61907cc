"""post_crawler — asynchronous crawl-and-extract pipeline for submitted posts."""
