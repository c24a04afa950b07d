from typing import List, Optional

from pydantic import BaseModel, Field
from sqlmodel import Session, col, or_, select

from database.models import Customer


class CustomerIn(BaseModel):
    name: str = Field(min_length=1)
    phone: Optional[str] = None
    email: Optional[str] = None


def create_customer(session: Session, data: CustomerIn) -> Customer:
    customer = Customer(**data.model_dump())
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return customer


def update_customer(session: Session, customer_id: int, data: CustomerIn) -> Optional[Customer]:
    # Loyalty balance and spend only change through committed sales
    customer = session.get(Customer, customer_id)
    if not customer:
        return None
    for key, value in data.model_dump().items():
        setattr(customer, key, value)
    session.add(customer)
    session.commit()
    session.refresh(customer)
    return customer


def list_customers(session: Session, search: Optional[str] = None) -> List[Customer]:
    statement = select(Customer)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        statement = statement.where(or_(col(Customer.name).ilike(pattern), col(Customer.phone).ilike(pattern)))
    return session.exec(statement.order_by(Customer.name)).all()
