# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

# Record-store collection paths.
USERS_COLLECTION = "users"
ORDERS_COLLECTION = "order"
STORABLE_OBJECTS_COLLECTION = "storableobjects"
COMPANIES_COLLECTION = "Companies"

# Characters the realtime database rejects in a key.
INVALID_KEY_CHARACTERS = frozenset("/.#$[]")

# Keys inside a company record.
COMPANY_NAME_KEY = "name"
COMPANY_PRICE_INDEX_KEY = "Price Index"
COMPANY_PICKUP_TIMES_KEY = "Pickup Times"
COMPANY_DROPOFF_TIMES_KEY = "Dropoff Times"
PRICE_INDEX_ITEM_NAME_KEY = "name"
PRICE_INDEX_OPTION_PRICE_KEY = "price"

# Blob store.
IMAGE_EXTENSION = ".jpg"
MAX_BLOB_BYTES = 80 * 1024 * 1024

# Payments.
PAYMENT_REQUEST_TIMEOUT = 5  # seconds
PUBLISHABLE_KEY_PLACEHOLDER_MARKER = "#"
DEMO_CUSTOMER_ID = "cus_test"
