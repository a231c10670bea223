# clusterops

`clusterops` holds the reconciliation logic a cluster operator uses to carry a
platform through an upgrade. It also provides the built-in roles and namespaces
such an operator creates, index functions for cached objects, helpers that
decide where a dashboard UI is served from, and an object-storage backend.

The package uses only the standard library. Clusters, stores and storage
clients are plain objects that you pass to the handlers. Each handler's
docstring lists the methods it calls on them. That makes every handler usable
with in-memory fakes.

## Installation

Install the project directory with pip. The `test` extra adds pytest for
running the tests under `tests/`.

## Modules

- `clusterops.semver`: `parse_semver` parses versions such as `v1.2.3-rc1+build`
  into a `SemVer`. `SemVer` supports `compare()` and the ordering operators, and
  ignores build metadata when ordering. Malformed input raises
  `MalformedVersionError`.
- `clusterops.quantity`: `parse_quantity` turns a resource quantity (`500m`,
  `32920204Ki`, `1e3`) into an exact `Fraction`. `convert_to_gi` renders a byte
  count as whole `Gi`, or as whole `Mi` when it is below one Gi, and rounds up.
- `clusterops.versions`: contains the `Version` and `VersionSpec` records,
  `is_dev_version` and `can_upgrade_version`. `VersionSyncer` posts a
  `CheckUpgradeRequest` to an upgrade-check URL, stores the upgradable versions
  from the `CheckUpgradeResponse` and deletes stored versions that are no longer
  newer than the running one. `VersionSyncer.run` repeats the sync on an
  interval until a `threading.Event` is set.
- `clusterops.resources`: contains the `Upgrade`, `Plan`, `Job`, `Deployment`
  and `ManagedAddon` records and their status records, plus `NotFoundError`.
  `ConditionType` reads and writes an object's conditions through `get_status`,
  `is_true`, `set_status`, `set_reason`, `set_message` and `set_error`.
- `clusterops.upgrade_common`: provides the shared label and name constants,
  `base_plan`, `server_plan` and `agent_plan` for node upgrade plans,
  `default_tolerations`, `format_repo_image` and `upgrade_charts_repo_url`. Its
  `CommonHandler` looks up the latest upgrade and updates error, upgrading and
  ready conditions.
- Upgrade handlers:
  - `UpgradeHandler` (`clusterops.upgrade_controller`) moves an upgrade through
    the charts repo, managed addons, operator charts and node plans, then marks
    it complete.
  - `RepoReconciler` (`clusterops.upgrade_repo`) creates and updates the chart
    repo deployment and its service.
  - `JobHandler` (`clusterops.job_controller`) records completed chart upgrade
    jobs.
  - `AddonHandler` (`clusterops.addons_controller`) marks managed addons ready.
  - `DeploymentHandler` (`clusterops.deployment_controller`) syncs repo and
    manifest readiness.
  - `PlanHandler` (`clusterops.plan_controller`) records completed node plans.
  - `SettingHandler` (`clusterops.setting_controller`) runs a version sync when
    the server-version setting changes.
- `clusterops.builtin`: `default_global_roles`, `default_namespace_role_templates`
  and `default_namespaces` build `Role`, `PolicyRule` and `Namespace` records.
  `bootstrap` applies them through an applier object.
- `clusterops.indexers`: provides `crb_key`, `index_crb_by_role_and_subject`,
  `index_user_by_username` and `index_token_by_name`.
- `clusterops.ui`: `js_url` and `css_url` give the bundled API UI asset paths,
  or an empty string when an external UI is used. `UIHandler` decides whether
  the dashboard index comes from a URL or a local directory, reads the index
  page, and maps request paths to local asset files.
- `clusterops.storage`: defines the `Backend` interface, the `FileInfo` record
  and `StorageError`.
- `clusterops.object_store`: `ObjectStoreBackend` implements `Backend` over one
  bucket of an S3-style client. It uploads files and directory trees, downloads
  a file or a whole directory as a zip archive, and can list, copy and delete
  objects. It creates and removes directory markers and builds virtual-host
  style object URLs.
- `clusterops.user_controller`: `UserHandler` labels users with their username,
  mirrors `spec.active` into status, sets or clears the admin flag from
  admin-role bindings, and removes a deleted user's bindings.

## Example

```python
from clusterops.semver import parse_semver
from clusterops.versions import Version, VersionSpec, can_upgrade_version

current = parse_semver("v0.2.0")
candidate = Version(
    name="v0.4.0",
    spec=VersionSpec(min_upgradable_version="v0.2.0-rc1"),
)
print(can_upgrade_version(current, candidate))  # True
```

## What it does not do

- The package has no command-line program and no server. It does not watch a
  cluster or serve HTTP requests. You call the handlers with objects that you
  fetched yourself, and you wire them to a cluster yourself.
- It has no cluster client or S3 client. `ObjectStoreBackend` needs a client
  object that offers the methods listed in its docstring.
- It does not create a default administrator user or its password.
  `bootstrap` applies only namespaces, global roles and role templates.