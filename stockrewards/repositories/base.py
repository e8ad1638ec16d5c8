from abc import ABC
from typing import TypeVar, Generic, Optional, List, Any, Type
from sqlalchemy.orm import Session
from pydantic import BaseModel

T = TypeVar("T")
SchemaType = TypeVar("SchemaType", bound=BaseModel)


class BaseRepository(Generic[T, SchemaType], ABC):
    """모든 리포지토리의 베이스 클래스 - Pydantic 응답 보장

    트랜잭션 경계는 서비스 계층이 관리합니다. commit=False로 호출하면 flush만 수행하므로
    여러 리포지토리 호출을 하나의 원자적 단위로 묶을 수 있습니다.
    """

    def __init__(
        self, model_class: Type[T], schema_class: Type[SchemaType], db: Session
    ):
        self.model_class = model_class
        self.schema_class = schema_class
        self.db = db

    def _to_schema(self, model_instance: Any) -> Optional[SchemaType]:
        """SQLAlchemy 모델을 Pydantic 스키마로 변환"""
        if model_instance is None:
            return None
        return self.schema_class.model_validate(model_instance)

    def _to_schemas(self, model_instances: List[Any]) -> List[SchemaType]:
        results = []
        for instance in model_instances:
            schema_instance = self._to_schema(instance)
            if schema_instance is not None:
                results.append(schema_instance)
        return results

    def get_by_id(self, id: Any) -> Optional[SchemaType]:
        """ID로 조회 - Pydantic 스키마 반환"""
        model_instance = self.db.get(self.model_class, id)
        return self._to_schema(model_instance)

    def create(self, commit: bool = True, **kwargs) -> Optional[SchemaType]:
        """새 레코드 생성 - Pydantic 스키마 반환

        IntegrityError 등 DB 예외는 그대로 전파되며, 롤백은 호출한 서비스가 결정합니다.
        """
        instance = self.model_class(**kwargs)
        self.db.add(instance)
        self.db.flush()
        self.db.refresh(instance)
        if commit:
            self.db.commit()
        return self._to_schema(instance)
