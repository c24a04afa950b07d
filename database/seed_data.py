from decimal import Decimal
from sqlmodel import Session, select
from database.models import Product

def seed_products(session: Session):
    products_data = [
        {
            "name": "Tata Salt 1kg",
            "brand": "Tata",
            "hsn_code": "25010020",
            "barcode": "8904043901015",
            "mrp": Decimal("28"),
            "cost_price": Decimal("22"),
            "selling_price": Decimal("26"),
            "gst_rate": Decimal("5"),
            "price_includes_gst": True,
            "stock_quantity": 120,
        },
        {
            "name": "Amul Butter 100g",
            "brand": "Amul",
            "hsn_code": "04051000",
            "barcode": "8901262010016",
            "mrp": Decimal("58"),
            "cost_price": Decimal("50"),
            "gst_rate": Decimal("12"),
            "price_includes_gst": True,
            "stock_quantity": 60,
        },
        {
            "name": "Dettol Soap 125g",
            "brand": "Dettol",
            "hsn_code": "34011190",
            "barcode": "8901396329015",
            "mrp": Decimal("118"),
            "cost_price": Decimal("90"),
            "selling_price": Decimal("118"),
            "gst_rate": Decimal("18"),
            "price_includes_gst": True,
            "stock_quantity": 80,
        },
        {
            "name": "Basmati Rice 5kg",
            "brand": "India Gate",
            "hsn_code": "10063020",
            "barcode": "8906011590032",
            "mrp": Decimal("650"),
            "cost_price": Decimal("520"),
            "selling_price": Decimal("599"),
            "gst_rate": Decimal("5"),
            "price_includes_gst": False,
            "stock_quantity": 40,
        },
    ]

    for p_data in products_data:
        # Check if exists by name
        statement = select(Product).where(Product.name == p_data["name"])
        product = session.exec(statement).first()

        if not product:
            session.add(Product(**p_data))
            print(f"Adding product: {p_data['name']}")

    session.commit()
