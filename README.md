# byohost

Tools for preparing a "bring your own host" machine to run Kubernetes
components. The package covers two jobs:

- **Bootstrap execution** (`byohost.cloudinit`): applies the `write_files`
  and `runCmd` directives of a cloud-init style YAML bootstrap script.
- **Kubernetes component installation** (`byohost.installer`): picks an
  installer for an operating system and Kubernetes version, fetches the
  matching bundle into a local cache, and runs the install or uninstall
  steps in order.

## Installation

```
pip install byohost
```

Python 3.10 or later is required. The only library dependency is PyYAML.

## Bootstrap scripts

`ScriptExecutor.execute(script)` parses the script, then for every entry of
`write_files`:

1. creates the parent directory if it is missing;
2. decodes the content according to `encoding` (`base64`/`b64`,
   `gzip+base64`/`gz+base64`/`gzip+b64`/`gz+b64`, anything else is plain text);
3. renders the content as a template;
4. writes the file, appending when `append: true` is set, then applies
   `permissions` (an octal string such as `'644'`) and `owner` (`user:group`;
   the uid and gid are taken from the user's account entry).

Afterwards every command listed under `runCmd` is run with `/bin/sh -c`;
standard output is discarded, standard error passes through. The first
failure stops execution and is raised as `CloudInitError`.

```python
from byohost.cloudinit import ScriptExecutor, FileWriter, CmdRunner, TemplateParser

executor = ScriptExecutor(
    write_files_executor=FileWriter(),
    run_cmd_executor=CmdRunner(),
    parse_template_executor=TemplateParser({"DefaultNetworkInterfaceName": "eth0"}),
)
executor.execute("""
write_files:
- path: /tmp/iface.txt
  content: "interface {{ .DefaultNetworkInterfaceName }}"
runCmd:
- cat /tmp/iface.txt
""")
```

`TemplateParser` understands `{{ . }}`, field chains such as `{{ .A.B }}`
(looked up as mapping keys or attributes, also in snake_case), string
literals, comments, and the `{{-` / `-}}` whitespace trimming markers.
The helpers `parse_encoding_scheme` and `decode_content` are available on
their own.

## Kubernetes component installation

```python
from byohost.installer import list_supported_os, list_supported_k8s, preview_changes

_, bundles = list_supported_os()
os_bundle = bundles[0]
k8s = list_supported_k8s(os_bundle)[0]
install, uninstall = preview_changes(os_bundle, k8s)
print(install)
```

- `create_installer(download_path)` detects the OS with `hostnamectl`, checks
  that `socat`, `ebtables`, `ethtool` and `conntrack` are on the `PATH`, and
  returns an `Installer`.
- `new_unchecked(os_name, download_path=...)` skips detection and checks; with
  an empty download path the installer runs in preview mode, reporting every
  step without downloading or executing anything.
- `Installer.install(bundle_repo, k8s_ver, tag)` and `Installer.uninstall(...)`
  download the bundle (with the external `imgpkg` program) into the cache
  unless it is already there, then run the shell steps with `bash`. A failed
  install step rolls back every step applied so far, in reverse order.

The building blocks live in `byohost.algo` (`BaseK8sInstaller`, `ShellStep`,
`apt_step`, `Ubuntu20_4K8s1_22`, `OutputBuilder`), `byohost.registry`
(`Registry`), `byohost.bundle_downloader` (`BundleDownloader`) and
`byohost.os_detector` (`OSDetector`).

Installer errors are subclasses of `byohost.exceptions.InstallerError`:
`DetectOSError`, `OsK8sNotSupportedError`, `BundleDownloadError`,
`BundleExtractError`, `BundleInstallError` and `BundleUninstallError`.

## Command line

`byoh-installer` is a helper for the installer:

```
byoh-installer --list-supported
byoh-installer --detect
byoh-installer --preview-os-changes --os Ubuntu_20.04.1_x86-64 --k8s v1.22.1
byoh-installer --install --k8s v1.22.1 --tag v1.22.1 --cache-path /var/lib/byoh/bundles
byoh-installer --uninstall --k8s v1.22.1 --tag v1.22.1 --cache-path /var/lib/byoh/bundles
```

Kubernetes versions carry the leading `v`. `--os` overrides OS detection,
`--bundle-repo` selects the OCI registry (default
`projects.registry.vmware.com`) and `--cache-path` the bundle cache
(default `.`). Run `byoh-installer --help` for all options.

## Supported platforms

Ubuntu 20.04 (x86-64) with Kubernetes v1.21, v1.22 and v1.23.

## What this package does not do

There is no long-running host agent here: nothing registers the host with a
cluster, watches for bootstrap scripts or requests certificates. Scripts are
handed to `ScriptExecutor` by the caller, and installs are started through
the library or `byoh-installer`.

## Running the tests

```
pip install -e ".[test]"
pytest
```