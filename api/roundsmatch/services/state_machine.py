RUNNING = "running"
COMPLETED = "completed"
PARTIAL = "partial"
FAILED = "failed"

TERMINAL_STATUSES = {COMPLETED, PARTIAL, FAILED}
NON_FAILED_STATUSES = {RUNNING, COMPLETED, PARTIAL}


def transition_batch_status(current: str, action: str) -> str:
    if current in TERMINAL_STATUSES:
        return current

    if action == "complete":
        if current == RUNNING:
            return COMPLETED
        return current

    if action == "partial":
        if current == RUNNING:
            return PARTIAL
        return current

    if action in {"fail", "timeout"}:
        if current == RUNNING:
            return FAILED
        return current

    return current


def batch_outcome(total_groups: int, failed_groups: int) -> str:
    if failed_groups and failed_groups >= total_groups:
        return "fail"
    if failed_groups:
        return "partial"
    return "complete"
