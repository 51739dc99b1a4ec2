from . import admin_endpoints, guard_endpoints

__all__ = [
	"admin_endpoints",
	"guard_endpoints",
]
