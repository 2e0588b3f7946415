import json, threading
from pathlib import Path
from typing import Iterable, List

from .models import Operators


class OperatorRegistry:
    """
    Хранит список операторов в JSON-файле. Единственная часть конфигурации,
    которая меняется во время работы: добавление/удаление сразу пишется на диск.
    При первом запуске файл заполняется из ADMIN_IDS.
    """
    def __init__(self, path: str, seed: Iterable[int] = ()):
        self._path = Path(path)
        self._lock = threading.RLock()
        self._operators = Operators()
        self.load(seed)

    def load(self, seed: Iterable[int] = ()):
        with self._lock:
            if self._path.exists():
                self._operators = Operators(**json.loads(self._path.read_text(encoding="utf-8")))
            else:
                self._operators = Operators(user_ids=list(dict.fromkeys(seed)))
                self.save()

    def save(self):
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(self._operators.model_dump_json(indent=2), encoding="utf-8")

    def list_all(self) -> Operators:
        with self._lock:
            return self._operators

    def ids(self) -> List[int]:
        with self._lock:
            return list(self._operators.user_ids)

    def is_operator(self, user_id: int) -> bool:
        with self._lock:
            return user_id in self._operators.user_ids

    def add(self, user_id: int) -> bool:
        with self._lock:
            if user_id in self._operators.user_ids:
                return False
            self._operators.user_ids.append(user_id)
            self.save()
            return True

    def remove(self, value: str) -> bool:
        try:
            user_id = int(str(value).strip())
        except ValueError:
            return False
        with self._lock:
            if user_id not in self._operators.user_ids:
                return False
            self._operators.user_ids.remove(user_id)
            self.save()
            return True
