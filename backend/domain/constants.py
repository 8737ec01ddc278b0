"""
Domain constants used across services/routers.
"""

# Checkout session metadata keys (written at reservation, read by finalize)
META_LITTER_ID = "litterId"
META_PUPPY_IDS = "puppyIds"
META_USER_ID = "userId"
META_DELIVERY_OPTION = "deliveryOption"
META_DELIVERY_FEE = "deliveryFee"
META_DELIVERY_ZIP = "deliveryZipCode"

# Catalog object tags
TAG_APP_MANAGED = "app_managed"
TAG_ENTITY = "entity"
TAG_TEST_DATA = "test_data"
TAG_LITTER_ID = "litter_id"
TAG_GENDER = "gender"

ENTITY_LITTER = "litter"
