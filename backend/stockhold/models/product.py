from sqlalchemy import Column, Integer, String, Boolean
from stockhold.db import Base

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    sku = Column(String(64), unique=True, index=True, nullable=False)
    name = Column(String(256), nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    # default for variants that don't set their own threshold
    low_stock_threshold = Column(Integer, nullable=True)

    def __repr__(self):
        return f"<Product sku={self.sku} name={self.name}>"
