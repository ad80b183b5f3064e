"""Route modules mounted by ``snapscrape.api.main.create_app``."""
