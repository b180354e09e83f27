from __future__ import annotations

import logging
from collections import defaultdict

from pos_sync.application.use_cases.mutations import MutationExecutor
from pos_sync.application.use_cases.sales import sale_log_for
from pos_sync.domain.action_types import ActionType
from pos_sync.domain.collections import PRODUCT_SALE_LOGS, SALES
from pos_sync.domain.ids import product_sale_log_id
from pos_sync.domain.models import ProductSaleLog, Sale
from pos_sync.domain.sync_models import IntegrityIssue, IntegrityReport
from pos_sync.infrastructure.local_store import LocalStore

logger = logging.getLogger(__name__)

MISSING = "missing"
DUPLICATE = "duplicate"
ORPHAN = "orphan"
VOIDED_WITH_LOGS = "voided_with_logs"


def find_issues(sales: list[Sale], logs: list[ProductSaleLog]) -> list[IntegrityIssue]:
    """Every non-voided sale line needs exactly one log; voided sales need none."""
    by_line: dict[tuple[str, str], list[str]] = defaultdict(list)
    for log in logs:
        by_line[(log.sale_id, log.product_id)].append(log.id)

    issues: list[IntegrityIssue] = []
    expected: set[tuple[str, str]] = set()
    for sale in sales:
        for item in sale.items:
            key = (sale.id, item.product_id)
            log_ids = tuple(by_line.get(key, ()))
            if sale.is_voided:
                if log_ids:
                    issues.append(IntegrityIssue(VOIDED_WITH_LOGS, sale.id, item.product_id, log_ids))
                continue
            expected.add(key)
            if not log_ids:
                issues.append(IntegrityIssue(MISSING, sale.id, item.product_id))
            elif len(log_ids) > 1:
                issues.append(IntegrityIssue(DUPLICATE, sale.id, item.product_id, log_ids))

    reported = expected | {(issue.sale_id, issue.product_id) for issue in issues}
    for (sale_id, product_id), log_ids in by_line.items():
        if (sale_id, product_id) not in reported:
            issues.append(IntegrityIssue(ORPHAN, sale_id, product_id, tuple(log_ids)))
    return issues


class IntegrityChecker:
    def __init__(self, store: LocalStore, executor: MutationExecutor) -> None:
        self._store = store
        self._executor = executor

    def check(self) -> IntegrityReport:
        sales = [Sale.from_payload(row) for row in self._store.get_all(SALES)]
        logs = [ProductSaleLog.from_payload(row) for row in self._store.get_all(PRODUCT_SALE_LOGS)]
        issues = find_issues(sales, logs)
        report = IntegrityReport(checked_sales=len(sales), issues=tuple(issues))
        if report.ok:
            logger.info("Sale log integrity check passed for %s sales", len(sales))
        else:
            logger.warning(
                "Sale log integrity check found %s issues",
                len(issues),
                extra={"extra": {kind: len(report.of_kind(kind)) for kind in (MISSING, DUPLICATE, ORPHAN, VOIDED_WITH_LOGS)}},
            )
        return report

    def repair_missing(self) -> int:
        """Writes and queues the logs of every non-voided sale line that has none."""
        missing = self.check().of_kind(MISSING)
        if not missing:
            return 0
        created = 0
        with self._executor.mutate("repair_sale_logs", SALES, PRODUCT_SALE_LOGS) as scope:
            for issue in missing:
                sale: Sale | None = scope.get(SALES, issue.sale_id)
                if sale is None:
                    continue
                log_id = product_sale_log_id(sale.id, issue.product_id)
                if scope.exists(PRODUCT_SALE_LOGS, log_id):
                    continue
                item = next(item for item in sale.items if item.product_id == issue.product_id)
                log = scope.stamp(sale_log_for(sale, item))
                scope.save(PRODUCT_SALE_LOGS, log, ActionType.PRODUCT_SALE_LOG)
                created += 1
            if created:
                scope.audit("SALE_LOG_REPAIR", f"Recreated {created} missing sale logs")
        logger.info("Recreated %s missing sale logs", created)
        return created
