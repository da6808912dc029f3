"""API router subpackage for the CamperMap layer service.

Submodules:
    - layers: Layer catalogue, cached layer data and cache metadata.
    - repos: Upload, listing, retrieval and deletion of CSV repository
      layers.

Each module exposes its own APIRouter for composition in the application's
main FastAPI instance.
"""
