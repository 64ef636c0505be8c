# shop_service/db/customer_functions.py
from typing import List
from pydantic.alias_generators import to_camel
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from shop_service.db.models import CustomerInfo
from shop_service.db.schemas import CustomerInfoCreate, CustomerInfoResponse
from shop_service.errors import BadRequest
from shop_service.validation import clean_string, required_string

REQUIRED_FIELDS = ("name", "phone", "address_line1", "city", "state", "postal_code", "country")


# Адреса пользователя: сначала адрес по умолчанию, затем недавно измененные
async def list_customer_info(db: AsyncSession, user_id: str) -> List[CustomerInfo]:
    result = await db.execute(
        select(CustomerInfo)
        .filter(CustomerInfo.user_id == user_id)
        .order_by(CustomerInfo.is_default.desc(), CustomerInfo.updated_at.desc())
    )
    return result.scalars().all()


async def create_customer_info(db: AsyncSession, user_id: str, data: CustomerInfoCreate) -> CustomerInfo:
    for field in REQUIRED_FIELDS:
        if not required_string(getattr(data, field)):
            raise BadRequest(f"{to_camel(field)} is required")

    is_default = data.is_default is True
    if is_default:
        # Адрес по умолчанию у пользователя может быть только один
        await db.execute(
            update(CustomerInfo)
            .where(CustomerInfo.user_id == user_id)
            .values(is_default=False)
        )

    email = clean_string(data.email)
    record = CustomerInfo(
        user_id=user_id,
        name=data.name.strip(),
        email=email.lower() if email else None,
        phone=data.phone.strip(),
        address_line1=data.address_line1.strip(),
        address_line2=clean_string(data.address_line2),
        city=data.city.strip(),
        state=data.state.strip(),
        postal_code=data.postal_code.strip(),
        country=data.country.strip(),
        is_default=is_default,
    )
    db.add(record)
    await db.commit()
    await db.refresh(record)
    return record


def serialize_customer_info(record: CustomerInfo) -> CustomerInfoResponse:
    return CustomerInfoResponse(
        id=record.id,
        user_id=record.user_id,
        name=record.name,
        email=record.email,
        phone=record.phone,
        address_line1=record.address_line1,
        address_line2=record.address_line2,
        city=record.city,
        state=record.state,
        postal_code=record.postal_code,
        country=record.country,
        is_default=record.is_default,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )
