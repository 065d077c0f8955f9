DEFAULT_DB_PATH = "lostfound.db"
APP_NAME = "Campus Lost & Found"
APP_VERSION = "1.0.0"
DEFAULT_CORS_ALLOW_ORIGINS = [
	"http://localhost",
	"http://127.0.0.1",
	"http://localhost:3000",
]
DEFAULT_TRUSTED_HOSTS = [
	"127.0.0.1",
	"localhost",
	"testserver",
]
SQLITE_BUSY_TIMEOUT_MS = 5000

ITEM_TYPES = ("LOST", "FOUND")
ITEM_CATEGORIES = ("ELECTRONICS", "CLOTHING", "ID_CARDS", "KEYS", "OTHER")
ITEM_STATUSES = ("OPEN", "CLAIMED", "RESOLVED")
CLAIM_STATUSES = ("PENDING", "APPROVED", "REJECTED")

SEARCH_RESULT_LIMIT = 5

# Client-side routes the assistant may send a user to.
NAVIGATION_ROUTES = {
	"/": "Home",
	"/report/lost": "Report Lost Item",
	"/report/found": "Report Found Item",
	"/items": "Browse Items",
	"/dashboard": "My Claims/Dashboard",
}
