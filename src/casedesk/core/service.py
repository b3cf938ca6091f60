"""Composite operations over a CaseService."""

import logging
from typing import Dict, List, Optional

from casedesk.exceptions import CaseServiceError, UnauthorizedError
from casedesk.models.case import Account, CaseBundle, CaseFilter, SearchResult
from casedesk.models.interfaces import CaseService

logger = logging.getLogger(__name__)


async def fetch_case_bundle(
    service: CaseService, case_number: str, strict: bool = False
) -> CaseBundle:
    """Fetch a case with its comments and attachments.

    The case itself must load. If comments or attachments fail, the bundle
    is returned with the piece empty and its error recorded, unless
    ``strict`` is set, in which case the error propagates.

    Args:
        service: Case service to fetch from
        case_number: Case to fetch
        strict: Fail on any partial result

    Returns:
        CaseBundle (check ``is_partial``)

    Raises:
        CaseServiceError: If the case could not be fetched (or, when strict,
            its comments or attachments)
    """
    case = await service.get_case(case_number)

    comments = []
    comments_error: Optional[str] = None
    try:
        comments = await service.get_comments(case_number)
    except UnauthorizedError:
        raise
    except CaseServiceError as e:
        if strict:
            raise
        logger.warning(f"Comments for case {case_number} unavailable: {e}")
        comments_error = str(e)

    attachments = []
    attachments_error: Optional[str] = None
    try:
        attachments = await service.get_attachments(case_number)
    except UnauthorizedError:
        raise
    except CaseServiceError as e:
        if strict:
            raise
        logger.warning(f"Attachments for case {case_number} unavailable: {e}")
        attachments_error = str(e)

    return CaseBundle(
        case=case,
        comments=comments,
        attachments=attachments,
        comments_error=comments_error,
        attachments_error=attachments_error,
    )


async def collect_case_numbers(
    service: CaseService, case_filter: Optional[CaseFilter], page_size: int = 100
) -> List[str]:
    """Page through every case matching the filter.

    Returns:
        Case numbers in server order, without duplicates
    """
    case_numbers: List[str] = []
    seen = set()
    offset = 0
    while True:
        page = await service.list_cases(case_filter, offset, page_size)
        logger.debug(
            f"Listed {len(page.items)} cases at offset {offset} (total {page.total_count})"
        )
        for case in page.items:
            if case.case_number not in seen:
                seen.add(case.case_number)
                case_numbers.append(case.case_number)
        offset += len(page.items)
        if not page.items or offset >= page.total_count:
            break
    return case_numbers


async def find_cases(service: CaseService, query: str, limit: int = 10) -> List[SearchResult]:
    """Keyword search over every case, closed ones included."""
    page = await service.list_cases(CaseFilter(keyword=query, include_closed=True), 0, limit)
    return [
        SearchResult(type="case", id=case.case_number, title=case.summary, uri=case.uri)
        for case in page.items
    ]


async def collect_accounts(service: CaseService, page_size: int = 100) -> List[Account]:
    """Accounts named on the cases the caller can see.

    The service has no account listing, so this pages through every case,
    closed ones included.

    Returns:
        Accounts sorted by number
    """
    names: Dict[str, str] = {}
    offset = 0
    while True:
        page = await service.list_cases(CaseFilter(include_closed=True), offset, page_size)
        for case in page.items:
            number = case.account_number
            if number:
                names[number] = case.account_name or names.get(number, "")
        offset += len(page.items)
        if not page.items or offset >= page.total_count:
            break

    logger.debug(f"Found {len(names)} accounts on {offset} cases")
    return [Account(number=number, name=names[number]) for number in sorted(names)]
