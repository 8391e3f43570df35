# coreos_updates

Building blocks for automatic updates of OSTree-based operating systems.

- `coreos_updates.fragments` parses one TOML configuration fragment
  (`ConfigFragment.from_toml`). Unknown keys are ignored.
- `coreos_updates.inputs` finds fragment files under several directories
  (`scan_fragments`) and merges them, later values overriding earlier ones
  (`ConfigInput.read_configs`, `ConfigInput.merge_fragments`). A file in a later
  directory masks a file of the same name in an earlier one. Dotfiles are
  skipped.
- `coreos_updates.identity.Identity` describes the machine: base architecture,
  booted release, update stream, platform ID (read from `/proc/cmdline`),
  update group, node UUID (derived from `/etc/machine-id`) and rollout
  wariness. `Identity.with_config` builds the default identity and applies
  the configured values. Group labels must match `^[a-zA-Z0-9.-]+$`, and
  the rollout wariness must lie between 0 and 1.
- `coreos_updates.cincinnati.Cincinnati` fetches the update graph and picks
  the next update from the booted release. It skips releases on a denylist
  and refuses downgrades unless they are allowed. `fetch_update_hint` logs
  failures and returns `None`. `next_update` raises `CincinnatiError` instead.
  A base URL may hold `${basearch}`, `${group}`, `${platform}` and `${stream}`
  placeholders.
- `coreos_updates.fleet_lock` takes and releases the cluster-wide reboot
  lock: `Client.pre_reboot` and `Client.steady_state`.
- `coreos_updates.rpm_ostree_client.RpmOstreeClient` runs `rpm-ostree` to
  stage, finalize and clean up deployments and to register as update
  driver. It caches `rpm-ostree status --json` output for as long as the
  mtime of `/ostree/deploy` stays the same.
- `coreos_updates.deadend` writes or removes the message-of-the-day fragment
  `/run/motd.d/85-zincati-deadend.motd`. It writes the fragment atomically.

## Installation

```
pip install .
```

Install the test tools with `pip install .[test]`.

## Command line

```
coreos-updates [-v...] deadend-motd set --reason "<text>"
coreos-updates [-v...] deadend-motd unset
```

`set` writes the dead-end MOTD fragment with the given reason. `unset`
removes it; a missing fragment is not an error. Both must run as `root`.
Each `-v` makes logging more verbose: warnings by default, then info, debug
and trace.

The command exits with 0 on success and 1 on failure. It exits with 2 on
bad usage. When the graph shows that the booted release has become, or has
stopped being, a dead-end, `find_update` runs
`pkexec /usr/libexec/zincati deadend-motd set --reason <reason>` or `unset`.

## Library use

```python
from coreos_updates.cincinnati import Cincinnati
from coreos_updates.fleet_lock import ClientBuilder
from coreos_updates.identity import Identity
from coreos_updates.inputs import ConfigInput

cfg = ConfigInput.read_configs(
    ["/usr/lib/", "/run/", "/etc/"], "zincati/config.d/", ["toml"]
)
identity = Identity.with_config(cfg.identity)

cincinnati = Cincinnati.with_config(cfg.cincinnati, identity)
target = cincinnati.fetch_update_hint(identity, set(), cfg.updates.allow_downgrade)

lock = ClientBuilder("http://fleet-lock.example.com:8080/", identity).build()
if target is not None and lock.pre_reboot():
    ...  # the reboot slot is held
```

Server failures raise `CincinnatiError` or `FleetLockError`. Both have
`error_kind()`, `error_value()` and `status_code()`. Their text reads
`server-side error, code <n>: ...` or `client-side error: ...`.

## What is not included

There is no long-running update agent. Nothing here runs the
check/stage/reboot loop on its own. It has no update strategies either:
the `strategy`, `fleet_lock` and `periodic` settings are read and merged
into `UpdateInput`, but nothing here acts on them, and there is no
maintenance-window logic. There is no metrics endpoint and no D-Bus
service. The command line has only the `deadend-motd` subcommand.