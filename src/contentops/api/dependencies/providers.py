from contentops.services.providers import CatalogClient


def get_catalog() -> CatalogClient:
    return CatalogClient()
