"""
Module: stock_kernel.selectors.document_selector
Responsibility: Read-only lookup and listing of stock document headers and
    their lines, for every document type.
Architecture position: Kernel > Selectors.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import or_, select

from stock_kernel.exceptions import NotFoundError
from stock_kernel.models.documents import DOCUMENT_MODELS, DocumentStatus, Transfer, VoucherType
from stock_kernel.selectors.base import BaseSelector


def _model_for(doc_type: VoucherType | str):
    return DOCUMENT_MODELS[VoucherType(doc_type)]


class DocumentSelector(BaseSelector):
    """
    Headers are looked up by document type; ``doc_type`` accepts a
    VoucherType or its value ("GRN", "MIN", "MRN", "TRF", "ADJ", "BKF").
    """

    def get(self, doc_type: VoucherType | str, document_id: UUID):
        """
        Raises:
            NotFoundError: no document of this type has the id.
        """
        model = _model_for(doc_type)
        header = self.session.get(model, document_id)
        if header is None:
            raise NotFoundError(model.__name__, document_id)
        return header

    def get_by_number(self, doc_type: VoucherType | str, number: str):
        model = _model_for(doc_type)
        header = self.session.execute(
            select(model).where(model.number == number)
        ).scalar_one_or_none()
        if header is None:
            raise NotFoundError(model.__name__, number)
        return header

    def lines(self, doc_type: VoucherType | str, document_id: UUID) -> list:
        return list(self.get(doc_type, document_id).lines)

    def list(
        self,
        doc_type: VoucherType | str,
        status: DocumentStatus | str | None = None,
        warehouse_id: UUID | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list:
        """
        Headers of one type, newest first.

        For transfers, ``warehouse_id`` matches either the source or the
        target warehouse.
        """
        model = _model_for(doc_type)
        stmt = select(model)
        if status is not None:
            stmt = stmt.where(model.status == DocumentStatus(status))
        if warehouse_id is not None:
            if model is Transfer:
                stmt = stmt.where(
                    or_(
                        Transfer.from_warehouse_id == warehouse_id,
                        Transfer.to_warehouse_id == warehouse_id,
                    )
                )
            else:
                stmt = stmt.where(model.warehouse_id == warehouse_id)
        if date_from is not None:
            stmt = stmt.where(model.document_date >= date_from)
        if date_to is not None:
            stmt = stmt.where(model.document_date <= date_to)
        stmt = stmt.order_by(model.document_date.desc(), model.number.desc())
        return list(self.session.execute(stmt).scalars().all())
