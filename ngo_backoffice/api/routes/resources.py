"""Managed resource endpoints (events, volunteers, content, gallery, ...).

Each resource gets the same routes from :func:`build_resource_router`:

    GET    /admin/{collection}            list (paged)
    GET    /admin/{collection}/{doc_id}   fetch one
    GET    /admin/{collection}/{doc_id}/history   recent audit records
    POST   /admin/{collection}            create          → 201
    POST   /admin/{collection}/bulk-delete   delete up to MAX_BULK_IDS documents
    PUT    /admin/{collection}/{doc_id}   merge-update
    DELETE /admin/{collection}/{doc_id}   delete

All of them require the resource's permission.  Every mutation attempt is
audited exactly once through ``AuditLogger.track``, with before/after
snapshots limited to the resource's snapshot fields.  Page images and
uploads record their creation as ``upload``; bulk deletes are a single
``bulk_operation`` record listing what was removed.
"""

from dataclasses import dataclass
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request

from ngo_backoffice.api.dependencies import (
    AuditDep,
    DocumentStoreDep,
    MetaDep,
    RateLimited,
    RequirePermission,
    read_json_object,
)
from ngo_backoffice.exceptions import ValidationError
from ngo_backoffice.security.audit_records import AuditAction, AuditActor, snapshot
from ngo_backoffice.security.models import Permission, SessionClaims

MAX_BULK_IDS = 100


@dataclass(frozen=True)
class ResourceSpec:
    collection: str
    resource: str
    permission: Permission
    required_fields: tuple[str, ...] = ()
    snapshot_fields: tuple[str, ...] = ()
    create_action: AuditAction = AuditAction.CREATE

    @property
    def list_key(self) -> str:
        return self.collection.replace("-", "_")


RESOURCES: tuple[ResourceSpec, ...] = (
    ResourceSpec(
        collection="events",
        resource="event",
        permission=Permission.MANAGE_EVENTS,
        required_fields=("title", "date"),
        snapshot_fields=("title", "date", "location", "status"),
    ),
    ResourceSpec(
        collection="volunteers",
        resource="volunteer",
        permission=Permission.MANAGE_VOLUNTEERS,
        required_fields=("name", "email"),
        snapshot_fields=("name", "email", "status"),
    ),
    ResourceSpec(
        collection="team",
        resource="team_group",
        permission=Permission.MANAGE_TEAM,
        required_fields=("name",),
        snapshot_fields=("name", "members"),
    ),
    ResourceSpec(
        collection="tags",
        resource="tag",
        permission=Permission.MANAGE_TAGS,
        required_fields=("name",),
        snapshot_fields=("name", "color"),
    ),
    ResourceSpec(
        collection="empowerments",
        resource="empowerment",
        permission=Permission.MANAGE_EMPOWERMENTS,
        required_fields=("title",),
        snapshot_fields=("title", "status"),
    ),
    ResourceSpec(
        collection="contacts",
        resource="contact",
        permission=Permission.MANAGE_CONTACTS,
        required_fields=("name", "email", "message"),
        snapshot_fields=("name", "email", "status"),
    ),
    ResourceSpec(
        collection="content",
        resource="content",
        permission=Permission.MANAGE_CONTENT,
        required_fields=("section", "key", "value"),
        snapshot_fields=("section", "key", "value"),
    ),
    ResourceSpec(
        collection="site-settings",
        resource="site_settings",
        permission=Permission.MANAGE_SETTINGS,
        required_fields=("key", "value"),
        snapshot_fields=("key", "value", "visible"),
    ),
    ResourceSpec(
        collection="page-images",
        resource="page_image",
        permission=Permission.MANAGE_PAGE_IMAGES,
        required_fields=("page", "section", "key", "alt", "url"),
        snapshot_fields=("page", "section", "key", "alt", "url"),
        create_action=AuditAction.UPLOAD,
    ),
    ResourceSpec(
        collection="gallery",
        resource="gallery",
        permission=Permission.MANAGE_GALLERY,
        required_fields=("title", "url"),
        snapshot_fields=("title", "url"),
    ),
    ResourceSpec(
        collection="uploads",
        resource="upload",
        permission=Permission.MANAGE_UPLOADS,
        required_fields=("filename", "url"),
        snapshot_fields=("filename", "url", "content_type"),
        create_action=AuditAction.UPLOAD,
    ),
)


def _check_required(spec: ResourceSpec, payload: dict[str, Any]) -> None:
    missing = [
        name
        for name in spec.required_fields
        if payload.get(name) is None or (isinstance(payload.get(name), str) and not payload[name].strip())
    ]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            errors=[{"field": name, "message": "This field is required"} for name in missing],
        )


def _parse_ids(payload: dict[str, Any]) -> list[str]:
    ids = payload.get("ids")
    if not isinstance(ids, list) or not ids or not all(isinstance(i, str) and i for i in ids):
        raise ValidationError.for_field("ids", "A non-empty list of ids is required")
    if len(ids) > MAX_BULK_IDS:
        raise ValidationError.for_field("ids", f"At most {MAX_BULK_IDS} ids per request")
    return list(dict.fromkeys(ids))


def build_resource_router(spec: ResourceSpec) -> APIRouter:
    router = APIRouter(prefix=f"/admin/{spec.collection}", tags=[spec.collection])
    Claims = Annotated[SessionClaims, Depends(RequirePermission(spec.permission, spec.resource))]

    @router.get("", dependencies=[Depends(RateLimited("read"))])
    async def list_documents(
        claims: Claims,
        documents: DocumentStoreDep,
        limit: Annotated[int, Query(ge=1, le=200)] = 50,
        offset: Annotated[int, Query(ge=0)] = 0,
    ) -> dict[str, Any]:
        items, total = await documents.list(spec.collection, limit=limit, offset=offset)
        return {spec.list_key: items, "total": total, "limit": limit, "offset": offset}

    @router.get("/{doc_id}", dependencies=[Depends(RateLimited("read"))])
    async def get_document(doc_id: str, claims: Claims, documents: DocumentStoreDep) -> dict[str, Any]:
        return {spec.resource: await documents.require(spec.collection, doc_id, spec.resource)}

    @router.get("/{doc_id}/history", dependencies=[Depends(RateLimited("read"))])
    async def document_history(
        doc_id: str,
        claims: Claims,
        audit: AuditDep,
        limit: Annotated[int, Query(ge=1, le=100)] = 10,
    ) -> dict[str, Any]:
        records = await audit.resource_activity(spec.resource, doc_id, limit=limit)
        return {"history": [r.to_dict() for r in records]}

    @router.post("", status_code=201, dependencies=[Depends(RateLimited("write"))])
    async def create_document(
        request: Request,
        claims: Claims,
        documents: DocumentStoreDep,
        audit: AuditDep,
        meta: MetaDep,
    ) -> dict[str, Any]:
        async with audit.track(
            spec.create_action, spec.resource, actor=AuditActor.from_claims(claims), meta=meta
        ) as entry:
            payload = await read_json_object(request)
            _check_required(spec, payload)
            document = await documents.create(spec.collection, payload)
            entry.resource_id = document["id"]
            entry.set_changes(after=snapshot(document, spec.snapshot_fields))
        return {"success": True, spec.resource: document}

    @router.post("/bulk-delete", dependencies=[Depends(RateLimited("write"))])
    async def bulk_delete_documents(
        request: Request,
        claims: Claims,
        documents: DocumentStoreDep,
        audit: AuditDep,
        meta: MetaDep,
    ) -> dict[str, Any]:
        async with audit.track(
            AuditAction.BULK_OPERATION, spec.resource, actor=AuditActor.from_claims(claims), meta=meta
        ) as entry:
            entry.metadata["operation"] = "delete"
            ids = _parse_ids(await read_json_object(request))
            entry.metadata["requested"] = len(ids)
            removed = await documents.delete_many(spec.collection, ids)
            entry.metadata["deleted"] = len(removed)
            entry.set_changes(before=[snapshot(d, ("id", *spec.snapshot_fields)) for d in removed])
        return {"success": True, "deleted": [d["id"] for d in removed]}

    @router.put("/{doc_id}", dependencies=[Depends(RateLimited("write"))])
    async def update_document(
        doc_id: str,
        request: Request,
        claims: Claims,
        documents: DocumentStoreDep,
        audit: AuditDep,
        meta: MetaDep,
    ) -> dict[str, Any]:
        async with audit.track(
            AuditAction.UPDATE,
            spec.resource,
            actor=AuditActor.from_claims(claims),
            meta=meta,
            resource_id=doc_id,
        ) as entry:
            payload = await read_json_object(request)
            before = await documents.require(spec.collection, doc_id, spec.resource)
            after = await documents.update(spec.collection, doc_id, payload, spec.resource)
            entry.set_changes(
                before=snapshot(before, spec.snapshot_fields),
                after=snapshot(after, spec.snapshot_fields),
            )
        return {"success": True, spec.resource: after}

    @router.delete("/{doc_id}", dependencies=[Depends(RateLimited("write"))])
    async def delete_document(
        doc_id: str,
        claims: Claims,
        documents: DocumentStoreDep,
        audit: AuditDep,
        meta: MetaDep,
    ) -> dict[str, Any]:
        async with audit.track(
            AuditAction.DELETE,
            spec.resource,
            actor=AuditActor.from_claims(claims),
            meta=meta,
            resource_id=doc_id,
        ) as entry:
            removed = await documents.delete(spec.collection, doc_id, spec.resource)
            entry.set_changes(before=snapshot(removed, spec.snapshot_fields))
        return {"success": True, "message": f"{spec.resource.replace('_', ' ').capitalize()} deleted"}

    return router


routers = [build_resource_router(spec) for spec in RESOURCES]
