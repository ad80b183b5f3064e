"""SnapScrape — render web pages in a headless browser and return them as markdown."""

__version__ = "0.1.0"
