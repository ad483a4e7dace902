"""
RBAC (Role-Based Access Control) application.

Provides company-scoped access control with:
- A static permission catalog with resource and global wildcards
- System, company and platform roles
- Per-company role assignments with cached effective permissions
- Office access grants and the current office pointer
- Invite based onboarding
- An authorization guard used by every protected endpoint
"""
