"""
Request clustering module for grouping similarly phrased requests.
"""

from .request_clusterer import RequestClusterer, cluster_requests

__all__ = ['RequestClusterer', 'cluster_requests']
