import logging
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Request, Form, Query, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from sqlmodel import Session
from starlette.middleware.sessions import SessionMiddleware

from config import LOG_LEVEL, SECRET_KEY
from database.session import create_db_and_tables, engine, get_session
from database.models import Customer, Product, Transaction, User
from database.seed_data import seed_products
from services.auth_service import AuthService
from services.billing_service import BillingDesk, get_desk
from services.cart import CustomerSnapshot, DiscountMode
from services.customer_service import CustomerIn, create_customer, list_customers, update_customer
from services.errors import (
    BillingValidationError,
    CheckoutInProgressError,
    CommitError,
    DuplicateProductError,
    NotAuthenticatedError,
)
from services.pricing import PaymentMethod, ProductSnapshot
from services.product_service import ProductIn, ProductService
from services.receipt_service import ReceiptLayout, build_receipt, render_receipt
from services.report_service import dashboard_summary, sales_report
from services.settings_service import get_store_settings, update_store_settings
from services.transaction_service import Tender

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("pos")

product_service = ProductService()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # On startup
    create_db_and_tables()
    with Session(engine) as session:
        AuthService.create_default_user_and_settings(session)
        seed_products(session)
    yield

app = FastAPI(title="POS Billing System", lifespan=lifespan)
app.add_middleware(SessionMiddleware, secret_key=SECRET_KEY)

# --- Dependencies ---

def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    return session.get(User, user_id)

def require_auth(user: Optional[User] = Depends(get_current_user)) -> User:
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Please log in")
    return user

def require_admin(user: User = Depends(require_auth)) -> User:
    if user.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin only")
    return user

def get_billing_desk(user: User = Depends(require_auth)) -> BillingDesk:
    return get_desk(user.id)

# --- Request bodies ---

class CartItemIn(BaseModel):
    product_id: Optional[int] = None
    barcode: Optional[str] = None

class QuantityIn(BaseModel):
    quantity: int

class CustomerSelectIn(BaseModel):
    customer_id: Optional[int] = None

class LoyaltyIn(BaseModel):
    points: int

class DiscountIn(BaseModel):
    mode: DiscountMode = DiscountMode.PERCENTAGE
    value: Decimal

class CheckoutIn(BaseModel):
    payment_method: PaymentMethod = PaymentMethod.CASH
    cash_received: Optional[Decimal] = None

# --- Helpers ---

def cart_payload(desk: BillingDesk, payment_method: Optional[PaymentMethod] = None, cash_received: Optional[Decimal] = None) -> dict:
    state = desk.state
    totals = desk.totals(payment_method, cash_received)
    can_pay = not state.is_empty and not desk.is_committing
    if payment_method == PaymentMethod.CASH and (cash_received is None or cash_received < totals.rounded_total):
        can_pay = False
    return {
        "items": [
            {
                "product_id": item.product.id,
                "name": item.product.name,
                "brand": item.product.brand,
                "unit_price": item.product.unit_price,
                "mrp": item.product.mrp,
                "gst_rate": item.product.gst_rate,
                "price_includes_gst": item.product.price_includes_gst,
                "quantity": item.quantity,
                "stock_quantity": item.product.stock_quantity,
                "total": item.total,
            }
            for item in state.items
        ],
        "customer": state.customer.model_dump() if state.customer else None,
        "loyalty": state.loyalty.model_dump(),
        "discount": state.discount.model_dump(),
        "totals": totals.model_dump(),
        "is_committing": desk.is_committing,
        "can_pay": can_pay,
    }

def run_cart_action(action, *args):
    try:
        return action(*args)
    except CheckoutInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except BillingValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

# --- Auth Routes ---

@app.post("/login")
def login(request: Request, username: str = Form(...), password: str = Form(...), session: Session = Depends(get_session)):
    user = AuthService.authenticate(session, username, password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    request.session["user_id"] = user.id
    return {"ok": True, "user": {"id": user.id, "username": user.username, "full_name": user.full_name, "role": user.role}}

@app.get("/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}

@app.get("/health")
def health_check():
    return {"status": "ok"}

# --- Products ---

@app.get("/api/products")
def get_products_api(q: Optional[str] = None, brand: Optional[str] = None, in_stock: bool = False, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    return product_service.list_products(session, search=q, brand=brand, in_stock_only=in_stock)

@app.get("/api/products/brands")
def get_brands_api(session: Session = Depends(get_session), user: User = Depends(require_auth)):
    return product_service.list_brands(session)

@app.get("/api/products/low-stock")
def get_low_stock_api(session: Session = Depends(get_session), user: User = Depends(require_auth)):
    return product_service.low_stock_products(session)

@app.get("/api/products/barcode/{code}")
def get_product_by_barcode_api(code: str, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    product = product_service.find_by_barcode(session, code)
    if not product: raise HTTPException(404, "Product not found")
    return product

@app.post("/api/products")
def create_product_api(payload: ProductIn, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    try:
        return product_service.create_product(session, payload)
    except DuplicateProductError as e:
        raise HTTPException(status_code=400, detail={"field": e.field, "message": str(e)})

@app.put("/api/products/{id}")
def update_product_api(id: int, payload: ProductIn, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    try:
        product = product_service.update_product(session, id, payload)
    except DuplicateProductError as e:
        raise HTTPException(status_code=400, detail={"field": e.field, "message": str(e)})
    if not product: raise HTTPException(404, "Not found")
    return product

@app.delete("/api/products/{id}")
def delete_product_api(id: int, session: Session = Depends(get_session), user: User = Depends(require_admin)):
    if not product_service.delete_product(session, id):
        raise HTTPException(404, "Not found")
    return {"ok": True}

# --- Customers ---

@app.get("/api/customers")
def get_customers_api(q: Optional[str] = None, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    return list_customers(session, q)

@app.post("/api/customers")
def create_customer_api(payload: CustomerIn, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    return create_customer(session, payload)

@app.put("/api/customers/{id}")
def update_customer_api(id: int, payload: CustomerIn, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    customer = update_customer(session, id, payload)
    if not customer: raise HTTPException(404, "Not found")
    return customer

# --- Cart (billing screen) ---

@app.get("/api/cart")
def get_cart_api(payment_method: Optional[PaymentMethod] = None, cash_received: Optional[Decimal] = None, desk: BillingDesk = Depends(get_billing_desk)):
    return cart_payload(desk, payment_method, cash_received)

@app.post("/api/cart/items")
def add_cart_item_api(payload: CartItemIn, session: Session = Depends(get_session), desk: BillingDesk = Depends(get_billing_desk)):
    product = None
    if payload.product_id is not None:
        product = session.get(Product, payload.product_id)
    elif payload.barcode:
        product = product_service.find_by_barcode(session, payload.barcode)
    if not product:
        raise HTTPException(404, "Product not found")
    run_cart_action(desk.add_item, ProductSnapshot.from_product(product))
    return cart_payload(desk)

@app.put("/api/cart/items/{product_id}")
def set_cart_quantity_api(product_id: int, payload: QuantityIn, desk: BillingDesk = Depends(get_billing_desk)):
    run_cart_action(desk.set_quantity, product_id, payload.quantity)
    return cart_payload(desk)

@app.delete("/api/cart/items/{product_id}")
def remove_cart_item_api(product_id: int, desk: BillingDesk = Depends(get_billing_desk)):
    run_cart_action(desk.remove_item, product_id)
    return cart_payload(desk)

@app.post("/api/cart/customer")
def select_customer_api(payload: CustomerSelectIn, session: Session = Depends(get_session), desk: BillingDesk = Depends(get_billing_desk)):
    snapshot = None
    if payload.customer_id is not None:
        customer = session.get(Customer, payload.customer_id)
        if not customer: raise HTTPException(404, "Customer not found")
        snapshot = CustomerSnapshot.from_customer(customer)
    run_cart_action(desk.select_customer, snapshot)
    return cart_payload(desk)

@app.post("/api/cart/loyalty")
def apply_loyalty_api(payload: LoyaltyIn, desk: BillingDesk = Depends(get_billing_desk)):
    run_cart_action(desk.apply_loyalty, payload.points)
    return cart_payload(desk)

@app.delete("/api/cart/loyalty")
def clear_loyalty_api(desk: BillingDesk = Depends(get_billing_desk)):
    run_cart_action(desk.clear_loyalty)
    return cart_payload(desk)

@app.post("/api/cart/discount")
def apply_discount_api(payload: DiscountIn, desk: BillingDesk = Depends(get_billing_desk)):
    run_cart_action(desk.apply_discount, payload.mode, payload.value)
    return cart_payload(desk)

@app.delete("/api/cart/discount")
def clear_discount_api(desk: BillingDesk = Depends(get_billing_desk)):
    run_cart_action(desk.clear_discount)
    return cart_payload(desk)

@app.delete("/api/cart")
def clear_cart_api(desk: BillingDesk = Depends(get_billing_desk)):
    run_cart_action(desk.clear)
    return cart_payload(desk)

# --- Checkout ---

@app.post("/api/checkout")
def checkout_api(payload: CheckoutIn, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    desk = get_desk(user.id)
    tender = Tender(method=payload.payment_method, cash_received=payload.cash_received)
    try:
        result = desk.checkout(session, tender, user)
    except CheckoutInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except NotAuthenticatedError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except BillingValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CommitError as e:
        raise HTTPException(status_code=502, detail={"message": e.user_message, "step": e.step, "retryable": e.retryable})

    transaction = result.transaction
    return {
        "transaction": transaction.model_dump(),
        "items": [item.model_dump() for item in result.items],
        "customer": result.customer.model_dump() if result.customer else None,
        "cashier": {"id": user.id, "full_name": user.full_name or user.username},
        "warnings": result.warnings,
        "receipt_urls": {
            layout.value: f"/sales/{transaction.id}/receipt?layout={layout.value}" for layout in ReceiptLayout
        },
    }

# --- Receipts ---

@app.get("/sales/{id}/receipt", response_class=HTMLResponse)
def get_sale_receipt(id: int, layout: ReceiptLayout = ReceiptLayout.THERMAL, auto_print: bool = Query(False, alias="print"), session: Session = Depends(get_session), user: User = Depends(require_auth)):
    transaction = session.get(Transaction, id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Sale not found")
    receipt = build_receipt(transaction, get_store_settings(session))
    return HTMLResponse(render_receipt(receipt, layout, auto_print=auto_print))

# --- Reports ---

@app.get("/api/reports/sales")
def get_sales_report_api(days: int = 7, session: Session = Depends(get_session), user: User = Depends(require_auth)):
    if days < 1: raise HTTPException(400, "days must be at least 1")
    return sales_report(session, days)

@app.get("/api/dashboard")
def get_dashboard_api(session: Session = Depends(get_session), user: User = Depends(require_auth)):
    return dashboard_summary(session)

# --- Settings ---

@app.get("/api/settings")
def get_settings_api(session: Session = Depends(get_session), user: User = Depends(require_auth)):
    return get_store_settings(session)

@app.post("/api/settings")
def update_settings_api(
    store_name: Optional[str] = Form(None),
    store_tagline: Optional[str] = Form(None),
    store_address: Optional[str] = Form(None),
    store_phone: Optional[str] = Form(None),
    gst_number: Optional[str] = Form(None),
    receipt_footer: Optional[str] = Form(None),
    session: Session = Depends(get_session),
    user: User = Depends(require_admin)
):
    return update_store_settings(session, {
        "store_name": store_name,
        "store_tagline": store_tagline,
        "store_address": store_address,
        "store_phone": store_phone,
        "gst_number": gst_number,
        "receipt_footer": receipt_footer,
    })
