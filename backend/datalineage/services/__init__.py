"""
Lineage engine services

Import services by their direct module path; this package does not
re-export them, so importing one service never loads the others:

    from datalineage.services.lineage_service import LineageService
    from datalineage.services.lineage_loader import LineageLoader
    from datalineage.services.graph_model import LineageGraphModel
    from datalineage.services.trace_engine import TraceSession
    from datalineage.services.filter_engine import FilterEngine
"""

__all__ = []
