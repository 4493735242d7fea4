"""
RBAC model package.

Defines the tuple model and enforcement engine used by the RBAC Service.
The model is held as an immutable snapshot so enforcement reads never
contend with administration writes or reloads.

Modules of interest:
- models: Tuple data classes, store encoding and API request/response models.
- graph: ModelGraph snapshot with copy-on-write mutations and cycle checks.
- engine: Role and subdomain inheritance resolution with default deny.
"""
