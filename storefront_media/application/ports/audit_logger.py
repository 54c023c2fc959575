from typing import Optional, Dict, Any, Protocol


class AuditLogger(Protocol):
    def log(self, action: str, success: bool = True, before: Optional[str] = None, after: Optional[str] = None,
            record_id: Optional[int] = None, details: Optional[Dict[str, Any]] = None) -> None:
        ...
