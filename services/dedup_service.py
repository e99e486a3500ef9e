import logging

logger = logging.getLogger("Deduplicator")


class ProcessedTransactionSet:
    """
    Bounded record of transaction ids that already produced a user notification.
    Once more than `soft_cap` ids are held, only the `keep` most recent survive.
    """

    def __init__(self, soft_cap=1000, keep=500):
        self.soft_cap = soft_cap
        self.keep = keep
        self._seen = {}  # insertion ordered, values unused

    def __contains__(self, tx_id):
        return self._normalize(tx_id) in self._seen

    def __len__(self):
        return len(self._seen)

    @staticmethod
    def _normalize(tx_id):
        return str(tx_id).lower()

    def mark_if_new(self, tx_id) -> bool:
        """Record `tx_id`; True only the first time it is seen."""
        if not tx_id:
            return False
        key = self._normalize(tx_id)
        if key in self._seen:
            return False
        self._seen[key] = None
        if len(self._seen) > self.soft_cap:
            self.trim()
        return True

    def trim(self):
        if len(self._seen) <= self.soft_cap:
            return 0
        dropped = len(self._seen) - self.keep
        recent = list(self._seen)[-self.keep:]
        self._seen = dict.fromkeys(recent)
        logger.info(f"Cleaned up processed transactions cache, kept {len(self._seen)} recent entries")
        return dropped

    def clear(self):
        self._seen.clear()
