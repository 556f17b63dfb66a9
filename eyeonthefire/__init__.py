"""
Eye on the Fire: live wildfire maps from NASA FIRMS satellite detections.

``eyeonthefire.main`` is the API proxy; ``eyeonthefire.client`` is the
client-side session that loads, caches and renders fire data through it.
"""
__version__ = "1.0.0"
