from typing import Dict, List, Optional

import pytest

from keeper_storage import DocumentStorage


class MemoryStorage(DocumentStorage):
    def __init__(self, documents: Optional[Dict[str, str]] = None) -> None:
        super().__init__(watch_interval=0.05)
        self.documents: Dict[str, str] = dict(documents or {})
        self.writes: List[str] = []

    def read_document(self, name: str) -> Optional[str]:
        return self.documents.get(name)

    def write_document(self, name: str, text: str) -> None:
        self.documents[name] = text
        self.writes.append(name)
        self._remember_write(name, text)

    def list_documents(self, prefix: str = "") -> List[str]:
        return sorted(name for name in self.documents if name.startswith(prefix))


@pytest.fixture
def memory_storage():
    return MemoryStorage()
