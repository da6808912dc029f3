"""App package initializer for the CamperMap layer service.

This package aggregates OpenStreetMap (Overpass), Wikipedia geosearch and
Wikidata SPARQL results into GeoJSON map layers for a camper map of the
Castellón region.

- Per-provider adapters normalise upstream results into typed features
- Oversized geosearch regions are tiled and deduplicated across languages
- A server-side tagged cache and a client-side durable cache share one
  storage contract and independently honour a 24 hour TTL
- A per-session orchestrator debounces viewport changes and tracks
  loading and error state per layer
- Users can upload CSV repositories that render as extra layers
"""
