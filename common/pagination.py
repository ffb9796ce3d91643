from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination for catalog, history and ledger listings.

    ``?page_size=`` is honoured up to ``max_page_size`` so the cashier screen can
    pull a whole category at once without unbounded payloads.
    """

    page_size_query_param = "page_size"
    max_page_size = 500
