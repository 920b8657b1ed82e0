import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import config
from .auth import get_password_hash
from .crud.users import create_user, get_user_by_email
from .database import Base, SessionLocal, engine
from .migrations import run_migrations
from .routers import (
    admin_router,
    customer_router,
    order_router,
    payment_router,
    product_router,
    shop_router,
    user_router,
)
from .routers.promotion_router import coupon_router, discount_router

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storefront",
    description="Product catalog, checkout and admin back-office API",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials="*" not in config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

app.include_router(product_router.router)
app.include_router(shop_router.router)
app.include_router(order_router.router)
app.include_router(customer_router.router)
app.include_router(coupon_router)
app.include_router(discount_router)
app.include_router(user_router.router)
app.include_router(admin_router.router)
app.include_router(payment_router.router)


def init_admin_user():
    db = SessionLocal()
    try:
        admin_user = get_user_by_email(db, config.ADMIN_EMAIL)
        if not admin_user:
            create_user(
                db,
                name=config.ADMIN_NAME,
                email=config.ADMIN_EMAIL,
                hashed_password=get_password_hash(config.ADMIN_PASSWORD),
                role="admin",
                email_verified=True,
            )
            logger.info("Admin user created successfully")
        elif admin_user.role != "admin" or not admin_user.email_verified:
            # Ensure the bootstrap account keeps admin rights
            admin_user.role = "admin"
            admin_user.email_verified = True
            db.commit()
            logger.info("Admin user updated successfully")
    except Exception:
        logger.exception("Error initializing admin user")
        db.rollback()
    finally:
        db.close()


@app.on_event("startup")
async def startup_event():
    run_migrations()
    init_admin_user()


@app.get("/")
def root():
    return {"status": "Storefront is running!"}


@app.get("/health")
def health_check():
    return {"status": "ok"}
