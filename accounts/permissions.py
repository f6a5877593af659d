from rest_framework.permissions import BasePermission


class HasRole(BasePermission):
    """Allow authenticated users whose role is in `roles`."""

    roles = ()
    message = "Your role is not allowed to perform this action."

    def has_permission(self, request, view):
        user = request.user
        if not (user and user.is_authenticated):
            return False
        return user.role in self.roles or user.is_superuser


class IsBuyer(HasRole):
    roles = ("buyer",)


class IsVendor(HasRole):
    roles = ("vendor",)


class IsAdminRole(HasRole):
    roles = ("admin",)
