from .base import *

DEBUG = False

SECRET_KEY = 'test-secret-key'

# File backed so threads in TransactionTestCase share one database;
# IMMEDIATE makes concurrent writers queue on BEGIN instead of deadlocking.
DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test_storefront.sqlite3',
        'OPTIONS': {'transaction_mode': 'IMMEDIATE', 'timeout': 20},
        'TEST': {'NAME': BASE_DIR / 'test_storefront.sqlite3'},
    }
}

ALLOWED_HOSTS = ['testserver']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
NOTIFICATIONS_RUN_INLINE = True

PAYSTACK_SECRET_KEY = 'sk_test_secret'
PAYSTACK_BASE_URL = 'https://paystack.test'
FRONTEND_URL = 'https://shop.test'
