# timoci

A library for distributing modules and other content as OpenContainers
artifacts, and for keeping the inventory of Kubernetes objects that an
instance manages.

## Installing

```
pip install timoci
```

## Artifact references

Artifact addresses take the form `oci://<domain>/<org>/<repo>[:tag|@digest]`.

```python
from timoci.url import parse_artifact_url, parse_repository_url, parse_digest

parse_artifact_url("oci://ghcr.io/org/app:1.0.0")   # "ghcr.io/org/app:1.0.0"
parse_artifact_url("oci://ghcr.io/org/app")         # "ghcr.io/org/app:latest"
parse_repository_url("oci://ghcr.io/org/app:1.0.0") # "ghcr.io/org/app"
```

`parse_artifact_ref` returns a `Reference` with `registry`, `repository`,
`tag` and `digest` fields, plus `context_name()` and `with_digest()`.
`parse_digest` accepts only addresses that name a `sha256:` digest. An
address without the `oci://` prefix, or with an invalid repository, tag or
digest, raises `ValueError`.

## Packaging and annotations

```python
from timoci.build import build_artifact
from timoci.metadata import parse_annotations, append_git_metadata

build_artifact("module.tgz", "./my-module", ["timoni.ignore"])

annotations = parse_annotations(["org.opencontainers.image.licenses=Apache-2.0"])
append_git_metadata("./my-module", annotations)
```

`build_artifact` writes a reproducible gzip tarball: symlinks and other
special files are skipped, owners and timestamps are cleared, and paths
matching the gitignore-style patterns (`IgnoreMatcher`) are left out. A
missing source directory raises `FileNotFoundError`.

`parse_annotations` raises `ValueError` for an argument that is not exactly
`key=value`. `append_git_metadata` runs `git` in the directory to set the
`org.opencontainers.image.created` annotation from the last commit, and the
`source` and `revision` annotations when they are not already set. Without
`git` or a repository, only the created annotation is set, to the current
UTC time.

## Talking to a registry

```python
from timoci.options import options
from timoci.registry import RegistryClient
from timoci.push import push_module
from timoci.pull import pull_module
from timoci.listing import list_module_versions

with RegistryClient(options("token")) as client:
    digest_url = push_module("oci://registry.example.com/mods/app:1.0.0",
                             "./my-module", ["timoni.ignore"], annotations, client)

    for ref in list_module_versions("oci://registry.example.com/mods/app", True, client):
        print(ref.version, ref.digest)

    module_ref = pull_module(digest_url, "./out", "./cache", client)
```

`options(credentials, insecure)` takes either a bearer token or a
`user:password` pair. The client uses plain HTTP when `insecure` is set and
for `localhost`, loopback addresses and `.local` hosts; it answers bearer
challenges by fetching a token from the registry's realm.

- `push_artifact` packages content as one layer annotated with a content
  type; `push_module` pushes a `module/vendor` layer holding `cue.mod` and a
  `module` layer holding the rest. Both return the `oci://...@sha256:...`
  address of the pushed manifest.
- `pull_artifact` extracts the content layers, optionally only those of one
  content type. `pull_module` extracts all content layers, keeps them as
  `<digest-hex>.tgz` in the cache directory when one is given, and returns a
  `ModuleReference` whose version comes from the manifest annotations.
- `list_artifact_tags` lists every tag with `latest` first, the rest in
  reverse order. `list_module_versions` lists `latest` first, then the tags
  that are strict semantic versions, newest first.
- `tag_artifact` adds a tag to an existing artifact.

Registry failures raise `RegistryError`, which carries the HTTP
`status_code` when there is one. An artifact of the wrong type, or one with
no matching layer, raises `ValueError`.

## Signing

`sign_artifact` and `verify_artifact` support the `cosign` provider and call
the `cosign` binary, which must be on `PATH`; its output is logged line by
line. Without a key, verification needs a certificate identity and an OIDC
issuer, each given literally or as a regular expression. An unknown
provider, a missing binary, missing keyless settings or a non-zero exit
status raise `SignError`.

## Instances and resources

`timoci.instances.InstanceManager` keeps an instance's inventory of
Kubernetes objects, given as plain dictionaries. `add_objects` records them
(and raises `ValueError` if the inventory is already filled),
`list_objects` and `list_meta` read it back, `version_of` looks up an
object's API version, and `diff` returns the objects that are missing from
a newer inventory, so they can be pruned. `sort_objects` puts objects in
apply order, with namespaces and other prerequisites first and webhook
configurations last.

`timoci.resources` builds the default `ApplyOptions` and `DeleteOptions` and
selects the objects of a change set by `Action`. `timoci.jobs.job_conditions`
works out whether a Job is complete, has failed, or is still in progress.

## What it does not do

There is no command-line program. The package does not connect to a
Kubernetes cluster: it does not apply, delete or wait for objects, and it
does not store instances on a cluster. It only prepares the inventories,
options and statuses for that work.

## Running the tests

```
pip install -e ".[test]"
pytest
```