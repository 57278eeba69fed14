"""
Image asset server test suite

Structure:
- unit/: path guard, derivative cache, precache walker, config, encoder
- integration/: HTTP behaviour through the FastAPI app
"""
