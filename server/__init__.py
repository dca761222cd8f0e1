"""HTTP API and command line entry points for CrawlSearch."""
