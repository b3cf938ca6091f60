"""Search request building for the case list and knowledge base endpoints.

The list endpoint is a Solr-style search service: filters become ``fq``
clauses packed into an ``expression`` string, results come back as flat
``case_*`` documents. The knowledge base search takes a plain query and
returns solution and article documents.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote_plus

from casedesk.models.case import Case, CaseFilter, SearchResult
from casedesk.models.common import parse_utc_timestamp

SEARCH_PATH = "/hydra/rest/search/v2/cases"
KB_SEARCH_PATH = "/support/search/v2/kcs"

FIELD_LIST = (
    "case_number,case_summary,case_status,case_product,case_version,case_severity,"
    "case_owner,case_accountNumber,case_accountName,case_contactName,case_createdDate,"
    "case_createdByName,case_lastModifiedDate,case_lastModifiedByName,uri"
)

SORT_CLAUSE = "case_lastModifiedDate desc"


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _match_any(field: str, values: Sequence[str]) -> Optional[str]:
    if not values:
        return None
    if len(values) == 1:
        return f"{field}:{_quote(values[0])}"
    return f"{field}:({' OR '.join(_quote(v) for v in values)})"


def _solr_date(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_filter_queries(
    case_filter: Optional[CaseFilter],
    closed_statuses: Sequence[str] = ("Closed",),
) -> List[str]:
    """Translate a filter into search filter-query clauses.

    Closed cases are excluded unless the filter names statuses explicitly or
    asks for closed cases.
    """
    if case_filter is None:
        case_filter = CaseFilter()

    clauses = [
        _match_any("case_status", case_filter.status),
        _match_any("case_severity", case_filter.severity),
        _match_any("case_product", case_filter.products),
        _match_any("case_accountNumber", case_filter.accounts),
        _match_any("case_groupNumber", [case_filter.group_number] if case_filter.group_number else []),
        _match_any("case_owner", [case_filter.owner] if case_filter.owner else []),
    ]
    if case_filter.start_date:
        clauses.append(f"case_createdDate:[{_solr_date(case_filter.start_date)} TO *]")
    if case_filter.end_date:
        clauses.append(f"case_createdDate:[* TO {_solr_date(case_filter.end_date)}]")
    if not case_filter.include_closed and not case_filter.status:
        clauses.extend(f"-case_status:{_quote(s)}" for s in closed_statuses)

    return [c for c in clauses if c]


def build_search_request(
    case_filter: Optional[CaseFilter],
    offset: int,
    limit: int,
    closed_statuses: Sequence[str] = ("Closed",),
) -> Dict[str, Any]:
    """Build the JSON body for one page of the case search."""
    expression = f"sort={quote_plus(SORT_CLAUSE)}&fl={quote_plus(FIELD_LIST)}"
    for clause in build_filter_queries(case_filter, closed_statuses):
        expression += f"&fq={quote_plus(clause)}"

    query = "*:*"
    if case_filter is not None and case_filter.keyword:
        query = case_filter.keyword

    return {
        "q": query,
        "start": offset,
        "rows": limit,
        "partnerSearch": False,
        "expression": expression,
    }


def case_from_search_doc(doc: Dict[str, Any]) -> Case:
    """Convert one search result document to a Case summary."""
    products = doc.get("case_product") or []
    if isinstance(products, str):
        products = [products]

    return Case(
        case_number=str(doc.get("case_number", "")),
        summary=doc.get("case_summary") or "",
        status=doc.get("case_status") or "",
        severity=doc.get("case_severity") or "",
        product=products[0] if products else "",
        version=doc.get("case_version") or "",
        owner=doc.get("case_owner") or "",
        account_number=doc.get("case_accountNumber") or "",
        account_name=doc.get("case_accountName") or "",
        contact_name=doc.get("case_contactName") or "",
        created_by=doc.get("case_createdByName") or "",
        created_date=parse_utc_timestamp(doc.get("case_createdDate")),
        last_modified=parse_utc_timestamp(doc.get("case_lastModifiedDate")),
        uri=doc.get("uri") or "",
    )


def build_kb_request(query: str, limit: int) -> Dict[str, Any]:
    """Build the JSON body of a knowledge base search."""
    return {"q": query, "rows": limit}


def result_from_kb_doc(doc: Dict[str, Any]) -> SearchResult:
    """Convert one knowledge base document to a SearchResult.

    Anything that is not a solution is listed as an article.
    """
    kind = "solution" if doc.get("documentKind") == "Solution" else "article"
    return SearchResult(
        type=kind,
        id=str(doc.get("id", "")),
        title=doc.get("allTitle") or doc.get("publishedTitle") or "",
        abstract=doc.get("abstract") or "",
        uri=doc.get("view_uri") or doc.get("uri") or "",
    )
