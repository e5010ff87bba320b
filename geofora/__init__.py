"""
GEOFORA Interlinking Engine

Bidirectional links between a forum's AI-generated Q&A and the business's
main site: relevance-ranked suggestions, paired forward/reverse link
creation, and whole-forum strategy runs with preview and commit modes.

Usage:
    from geofora.service import get_service

    service = get_service()
    summary = await service.generate_interlinking_strategy(forum_id=7)
"""

__version__ = "1.0.0"
