"""
Authenticated HTTP layer: single-request dispatch, retrying client, pagination.
"""

from gcloud_core.http.client import GoogleCloudHTTPClient
from gcloud_core.http.dispatcher import HTTPDispatcher, build_query_string, read_body
from gcloud_core.http.pagination import collect_all, paginate

__all__ = [
    "GoogleCloudHTTPClient",
    "HTTPDispatcher",
    "build_query_string",
    "collect_all",
    "paginate",
    "read_body",
]
