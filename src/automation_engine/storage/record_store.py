"""
CRM 记录存储接口

引擎通过按表名和记录ID寻址的通用接口访问线索、联系人、商机和任务，
不关心底层存储实现。
"""
import asyncio
import copy
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any

from ..models.common import generate_id, utcnow


# 实体类型 -> 表名
ENTITY_TABLES = {
    "LEAD": "leads",
    "CONTACT": "contacts",
    "DEAL": "deals",
}

TASKS_TABLE = "tasks"


def table_for_entity(entity_type: Optional[str]) -> Optional[str]:
    """根据触发实体类型获取表名"""
    if not entity_type:
        return None
    return ENTITY_TABLES.get(entity_type.upper())


class RecordStore(ABC):
    """记录存储接口"""

    @abstractmethod
    async def fetch_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """根据ID获取记录"""
        pass

    @abstractmethod
    async def fetch_by_filter(
        self,
        table: str,
        filters: Dict[str, Any] = None,
        limit: int = None
    ) -> List[Dict[str, Any]]:
        """按等值条件查询记录"""
        pass

    @abstractmethod
    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """插入记录，返回包含ID的记录"""
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        record_id: str,
        values: Dict[str, Any],
        expected_version: int = None
    ) -> bool:
        """
        更新记录

        Args:
            expected_version: 给定时只有版本号一致才会更新（乐观并发控制）

        Returns:
            是否更新成功；记录不存在或版本不一致时返回 False
        """
        pass

    @abstractmethod
    async def increment(self, table: str, record_id: str, column: str, amount: int = 1) -> bool:
        """原子自增"""
        pass


class InMemoryRecordStore(RecordStore):
    """内存记录存储实现（用于测试和本地运行）"""

    def __init__(self, data: Dict[str, List[Dict[str, Any]]] = None):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        for table, records in (data or {}).items():
            for record in records:
                self._put(table, dict(record))

    def _put(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        record.setdefault("id", generate_id())
        record.setdefault("version", 1)
        self.tables.setdefault(table, {})[str(record["id"])] = record
        return record

    async def fetch_by_id(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self.tables.get(table, {}).get(str(record_id))
        return copy.deepcopy(record) if record is not None else None

    async def fetch_by_filter(
        self,
        table: str,
        filters: Dict[str, Any] = None,
        limit: int = None
    ) -> List[Dict[str, Any]]:
        results = []
        for record in self.tables.get(table, {}).values():
            if all(record.get(key) == value for key, value in (filters or {}).items()):
                results.append(copy.deepcopy(record))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            record = copy.deepcopy(values)
            record.setdefault("created_at", utcnow())
            return copy.deepcopy(self._put(table, record))

    async def update(
        self,
        table: str,
        record_id: str,
        values: Dict[str, Any],
        expected_version: int = None
    ) -> bool:
        async with self._lock:
            record = self.tables.get(table, {}).get(str(record_id))
            if record is None:
                return False
            if expected_version is not None and record.get("version") != expected_version:
                return False

            record.update(copy.deepcopy(values))
            record["version"] = record.get("version", 0) + 1
            record["updated_at"] = utcnow()
            return True

    async def increment(self, table: str, record_id: str, column: str, amount: int = 1) -> bool:
        async with self._lock:
            record = self.tables.get(table, {}).get(str(record_id))
            if record is None:
                return False
            record[column] = (record.get(column) or 0) + amount
            return True
