"""Install and uninstall steps for Kubernetes components on a host.

An installer runs an ordered list of steps. Each step can be applied and
rolled back. When a step fails during installation, every step up to and
including the failing one is rolled back in reverse order.
"""

from __future__ import annotations

import os.path
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

_DEFAULT_SHELL = "bash"


class OutputBuilder(ABC):
    """Receives output as the installation algorithm runs."""

    @abstractmethod
    def out(self, text: str) -> None:
        """Record informational or content output."""

    @abstractmethod
    def err(self, text: str) -> None:
        """Record error output."""

    @abstractmethod
    def cmd(self, text: str) -> None:
        """Record a command about to be run."""

    @abstractmethod
    def desc(self, text: str) -> None:
        """Record a description."""

    @abstractmethod
    def msg(self, text: str) -> None:
        """Record a message."""


@dataclass
class OutputBuilderCounter(OutputBuilder):
    """Counts every output call, whatever its kind."""

    log_called_cnt: int = 0

    def out(self, text: str) -> None:
        self.log_called_cnt += 1

    def err(self, text: str) -> None:
        self.log_called_cnt += 1

    def cmd(self, text: str) -> None:
        self.log_called_cnt += 1

    def desc(self, text: str) -> None:
        self.log_called_cnt += 1

    def msg(self, text: str) -> None:
        self.log_called_cnt += 1


class Step(ABC):
    """A single reversible installation step."""

    @abstractmethod
    def do(self) -> None:
        """Apply the step; raise on failure."""

    @abstractmethod
    def undo(self) -> None:
        """Roll the step back; raise on failure."""


@dataclass
class ShellStep(Step):
    """A step whose apply and rollback are shell commands.

    When the installer has no bundle path, the step runs in preview mode:
    commands are reported but not executed.
    """

    installer: BaseK8sInstaller
    desc: str
    do_cmd: str
    undo_cmd: str

    def do(self) -> None:
        self.installer.output_builder.msg("Installing: " + self.desc)
        self._run(self.do_cmd)

    def undo(self) -> None:
        self.installer.output_builder.msg("Uninstalling: " + self.desc)
        self._run(self.undo_cmd)

    def _run(self, command: str) -> None:
        output = self.installer.output_builder
        shell = shutil.which(_DEFAULT_SHELL) or _DEFAULT_SHELL
        output.cmd(f"{shell} -c {command}")

        if not self.installer.bundle_path:
            return

        try:
            result = subprocess.run(
                [shell, "-c", command],
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            output.err(str(exc))
            raise

        # Output on stderr alone is not a failure: packages often warn.
        if result.stderr:
            output.err(result.stderr)

        if result.returncode != 0:
            error = subprocess.CalledProcessError(
                result.returncode, command, result.stdout, result.stderr
            )
            output.err(str(error))
            raise error

        if result.stdout:
            output.out(result.stdout)


def apt_step(installer: BaseK8sInstaller, apt_pkg: str, optional: bool = False) -> Step:
    """Return a step installing a .deb package from the bundle and holding it.

    An optional step does nothing when the package file is missing.
    """
    pkg_name = apt_pkg.split(".")[0]
    pkg_path = os.path.join(installer.bundle_path, apt_pkg)

    do_cmd = f"dpkg --install '{pkg_path}' && apt-mark hold {pkg_name}"
    undo_cmd = f"dpkg --purge {pkg_name}"
    if optional:
        do_cmd = f"if [ -f {pkg_path} ]; then {do_cmd}; fi"
        undo_cmd = f"if [ -f {pkg_path} ]; then {undo_cmd}; fi"

    return ShellStep(installer=installer, desc=pkg_name, do_cmd=do_cmd, undo_cmd=undo_cmd)


class K8sStepProvider(ABC):
    """Supplies the concrete steps of a Kubernetes installation for one OS."""

    @abstractmethod
    def swap_step(self, installer: BaseK8sInstaller) -> Step:
        """Step turning swap off."""

    @abstractmethod
    def firewall_step(self, installer: BaseK8sInstaller) -> Step:
        """Step disabling the firewall."""

    @abstractmethod
    def kernel_mods_load_step(self, installer: BaseK8sInstaller) -> Step:
        """Step loading the required kernel modules."""

    @abstractmethod
    def os_wide_cfg_update_step(self, installer: BaseK8sInstaller) -> Step:
        """Step applying system-wide configuration."""

    @abstractmethod
    def cri_tools_step(self, installer: BaseK8sInstaller) -> Step:
        """Step installing the CRI tools."""

    @abstractmethod
    def cri_kubernetes_step(self, installer: BaseK8sInstaller) -> Step:
        """Step installing the Kubernetes CNI."""

    @abstractmethod
    def containerd_step(self, installer: BaseK8sInstaller) -> Step:
        """Step installing containerd."""

    @abstractmethod
    def containerd_daemon_step(self, installer: BaseK8sInstaller) -> Step:
        """Step starting the containerd service."""

    @abstractmethod
    def kubeadm_step(self, installer: BaseK8sInstaller) -> Step:
        """Step installing kubeadm."""

    @abstractmethod
    def kubelet_step(self, installer: BaseK8sInstaller) -> Step:
        """Step installing kubelet."""

    @abstractmethod
    def kubectl_step(self, installer: BaseK8sInstaller) -> Step:
        """Step installing kubectl."""


class Ubuntu20_4K8s1_22(K8sStepProvider):
    """Steps for Ubuntu 20.04.x with Kubernetes 1.22.x."""

    def swap_step(self, installer: BaseK8sInstaller) -> Step:
        return ShellStep(
            installer=installer,
            desc="SWAP",
            do_cmd=r"swapoff -a && sed -ri '/\sswap\s/s/^#?/#/' /etc/fstab",
            undo_cmd=r"swapon -a && sed -ri '/\sswap\s/s/^#?//' /etc/fstab",
        )

    def firewall_step(self, installer: BaseK8sInstaller) -> Step:
        return ShellStep(
            installer=installer,
            desc="FIREWALL",
            do_cmd="ufw disable",
            undo_cmd="ufw enable",
        )

    def kernel_mods_load_step(self, installer: BaseK8sInstaller) -> Step:
        return ShellStep(
            installer=installer,
            desc="KERNEL MODULES",
            do_cmd="modprobe overlay && modprobe br_netfilter",
            undo_cmd="modprobe -r overlay && modprobe -r br_netfilter",
        )

    def os_wide_cfg_update_step(self, installer: BaseK8sInstaller) -> Step:
        conf_path = os.path.join(installer.bundle_path, "conf.tar")
        return ShellStep(
            installer=installer,
            desc="OS CONFIGURATION",
            do_cmd=f"tar -C / -xvf '{conf_path}' && sysctl --system",
            undo_cmd=(
                f"tar tf '{conf_path}' | xargs -n 1 echo '/' | sed 's/ //g' | xargs rm -f"
            ),
        )

    def cri_tools_step(self, installer: BaseK8sInstaller) -> Step:
        # Not available upstream.
        return apt_step(installer, "cri-tools.deb", optional=True)

    def cri_kubernetes_step(self, installer: BaseK8sInstaller) -> Step:
        # Not available upstream.
        return apt_step(installer, "kubernetes-cni.deb", optional=True)

    def containerd_step(self, installer: BaseK8sInstaller) -> Step:
        archive = os.path.join(installer.bundle_path, "containerd.tar")
        undo_cmd = (
            "rm -rf /opt/cni/ && rm -rf /opt/containerd/ && "
            f"tar tf '{archive}'"
            " | xargs -n 1 echo '/' | sed 's/ //g'"
            " | grep -e '[^/]$' | xargs rm -f"
        )
        return ShellStep(
            installer=installer,
            desc="CONTAINERD",
            do_cmd=f"tar -C / -xvf '{archive}'",
            undo_cmd=undo_cmd,
        )

    def containerd_daemon_step(self, installer: BaseK8sInstaller) -> Step:
        return ShellStep(
            installer=installer,
            desc="CONTAINERD SERVICE",
            do_cmd=(
                "systemctl daemon-reload && systemctl enable containerd"
                " && systemctl start containerd"
            ),
            undo_cmd=(
                "systemctl stop containerd && systemctl disable containerd"
                " && systemctl daemon-reload"
            ),
        )

    def kubeadm_step(self, installer: BaseK8sInstaller) -> Step:
        return apt_step(installer, "kubeadm.deb")

    def kubelet_step(self, installer: BaseK8sInstaller) -> Step:
        return apt_step(installer, "kubelet.deb")

    def kubectl_step(self, installer: BaseK8sInstaller) -> Step:
        return apt_step(installer, "kubectl.deb")


@dataclass
class BaseK8sInstaller:
    """Runs the steps of a provider in order, rolling back on failure.

    An empty bundle path means preview mode: nothing is executed.
    """

    step_provider: K8sStepProvider
    output_builder: OutputBuilder | None = None
    bundle_path: str = ""
    _unused: list = field(default_factory=list, repr=False, compare=False)

    def steps(self) -> list[Step]:
        """Return the steps in execution order.

        Order matters: kernel modules and forwarding must be set before
        kubeadm runs, and containerd must run as a daemon before kubeadm
        so that it is detected as the container engine.
        """
        p = self.step_provider
        return [
            p.swap_step(self),
            p.firewall_step(self),
            p.kernel_mods_load_step(self),
            p.os_wide_cfg_update_step(self),
            p.cri_tools_step(self),
            p.cri_kubernetes_step(self),
            p.containerd_step(self),
            p.containerd_daemon_step(self),
            p.kubelet_step(self),
            p.kubectl_step(self),
            p.kubeadm_step(self),
        ]

    def install(self) -> None:
        """Apply every step; on failure roll back and re-raise."""
        steps = self.steps()
        for index, step in enumerate(steps):
            try:
                step.do()
            except Exception:
                self._rollback(steps[: index + 1])
                raise

    def uninstall(self) -> None:
        """Roll back every step, continuing past individual failures."""
        self._rollback(self.steps())

    def _rollback(self, steps: list[Step]) -> None:
        for step in reversed(steps):
            try:
                step.undo()
            except Exception as exc:  # keep going so nothing is left behind
                if self.output_builder is not None:
                    self.output_builder.err(str(exc))