"""Rendered view package.

Module split:
    - `rendered_view`: BeautifulSoup projection with opaque node handles.
    - `resolver`: ranked strategies binding instructions to view nodes.
"""
