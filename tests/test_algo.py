import subprocess
from dataclasses import dataclass, field

import pytest

from byohost.algo import (
    BaseK8sInstaller,
    K8sStepProvider,
    OutputBuilder,
    OutputBuilderCounter,
    ShellStep,
    Step,
    Ubuntu20_4K8s1_22,
    apt_step,
)

STEPS_NUM = 22


@dataclass
class RecordingOutput(OutputBuilder):
    records: list = field(default_factory=list)

    def out(self, text):
        self.records.append(("out", text))

    def err(self, text):
        self.records.append(("err", text))

    def cmd(self, text):
        self.records.append(("cmd", text))

    def desc(self, text):
        self.records.append(("desc", text))

    def msg(self, text):
        self.records.append(("msg", text))

    def kinds(self, kind):
        return [text for k, text in self.records if k == kind]


class _MockStep(Step):
    def __init__(self, provider, name, fail):
        self.provider = provider
        self.name = name
        self.fail = fail

    def do(self):
        if self.fail:
            raise RuntimeError("step failed: " + self.name)
        self.provider.do_steps.append(self.name)

    def undo(self):
        if self.name in self.provider.do_steps:
            self.provider.undo_steps.append(self.name)


class MockUbuntuWithError(K8sStepProvider):
    def __init__(self, error_on_step):
        self.error_on_step = error_on_step
        self.do_steps = []
        self.undo_steps = []
        self._counter = 0

    def _step(self, name):
        index = self._counter % 11
        self._counter += 1
        return _MockStep(self, name, index == self.error_on_step)

    def swap_step(self, installer):
        return self._step("swap")

    def firewall_step(self, installer):
        return self._step("firewall")

    def kernel_mods_load_step(self, installer):
        return self._step("kernel")

    def os_wide_cfg_update_step(self, installer):
        return self._step("oscfg")

    def cri_tools_step(self, installer):
        return self._step("critools")

    def cri_kubernetes_step(self, installer):
        return self._step("crik8s")

    def containerd_step(self, installer):
        return self._step("containerd")

    def containerd_daemon_step(self, installer):
        return self._step("containerd-daemon")

    def kubeadm_step(self, installer):
        return self._step("kubeadm")

    def kubelet_step(self, installer):
        return self._step("kubelet")

    def kubectl_step(self, installer):
        return self._step("kubectl")


def _preview_installer():
    counter = OutputBuilderCounter()
    installer = BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), output_builder=counter)
    return installer, counter


def test_install_counts_each_step():
    installer, counter = _preview_installer()
    installer.install()
    assert counter.log_called_cnt == STEPS_NUM


def test_uninstall_counts_each_step():
    installer, counter = _preview_installer()
    installer.uninstall()
    assert counter.log_called_cnt == STEPS_NUM


def test_error_during_install_rolls_back_applied_steps():
    provider = MockUbuntuWithError(error_on_step=5)
    installer = BaseK8sInstaller(step_provider=provider)
    with pytest.raises(RuntimeError):
        installer.install()
    assert len(provider.do_steps) == 5
    assert len(provider.undo_steps) == 5
    assert provider.undo_steps == list(reversed(provider.do_steps))


def test_preview_install_messages_in_order():
    output = RecordingOutput()
    installer = BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), output_builder=output)
    installer.install()
    assert output.kinds("msg") == [
        "Installing: SWAP",
        "Installing: FIREWALL",
        "Installing: KERNEL MODULES",
        "Installing: OS CONFIGURATION",
        "Installing: cri-tools",
        "Installing: kubernetes-cni",
        "Installing: CONTAINERD",
        "Installing: CONTAINERD SERVICE",
        "Installing: kubelet",
        "Installing: kubectl",
        "Installing: kubeadm",
    ]


def test_preview_uninstall_runs_in_reverse_order():
    output = RecordingOutput()
    installer = BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), output_builder=output)
    installer.uninstall()
    msgs = output.kinds("msg")
    assert msgs[0] == "Uninstalling: kubeadm"
    assert msgs[-1] == "Uninstalling: SWAP"
    assert len(msgs) == 11


def test_steps_returns_eleven_steps():
    installer, _ = _preview_installer()
    steps = installer.steps()
    assert len(steps) == 11
    assert [s.desc for s in steps][:3] == ["SWAP", "FIREWALL", "KERNEL MODULES"]


def test_apt_step_commands():
    installer = BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), bundle_path="/bundle")
    step = apt_step(installer, "kubectl.deb")
    assert step.desc == "kubectl"
    assert step.do_cmd == "dpkg --install '/bundle/kubectl.deb' && apt-mark hold kubectl"
    assert step.undo_cmd == "dpkg --purge kubectl"


def test_apt_step_optional_commands():
    installer = BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), bundle_path="/bundle")
    step = apt_step(installer, "cri-tools.deb", optional=True)
    assert step.desc == "cri-tools"
    assert step.do_cmd == (
        "if [ -f /bundle/cri-tools.deb ]; then "
        "dpkg --install '/bundle/cri-tools.deb' && apt-mark hold cri-tools; fi"
    )
    assert step.undo_cmd == "if [ -f /bundle/cri-tools.deb ]; then dpkg --purge cri-tools; fi"


def test_os_config_step_uses_bundle_path():
    installer = BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), bundle_path="/b")
    step = Ubuntu20_4K8s1_22().os_wide_cfg_update_step(installer)
    assert step.do_cmd == "tar -C / -xvf '/b/conf.tar' && sysctl --system"


def test_shell_step_preview_reports_command_only():
    output = RecordingOutput()
    installer = BaseK8sInstaller(step_provider=Ubuntu20_4K8s1_22(), output_builder=output)
    step = ShellStep(installer=installer, desc="X", do_cmd="exit 1", undo_cmd="exit 1")
    step.do()
    assert output.kinds("msg") == ["Installing: X"]
    assert len(output.kinds("cmd")) == 1
    assert output.kinds("cmd")[0].endswith("-c exit 1")
    assert output.kinds("err") == []


def test_shell_step_runs_and_captures_stdout(tmp_path):
    output = RecordingOutput()
    installer = BaseK8sInstaller(
        step_provider=Ubuntu20_4K8s1_22(), output_builder=output, bundle_path=str(tmp_path)
    )
    step = ShellStep(installer=installer, desc="ECHO", do_cmd="echo hello", undo_cmd="echo bye")
    step.do()
    step.undo()
    assert output.kinds("out") == ["hello\n", "bye\n"]


def test_shell_step_stderr_is_not_failure(tmp_path):
    output = RecordingOutput()
    installer = BaseK8sInstaller(
        step_provider=Ubuntu20_4K8s1_22(), output_builder=output, bundle_path=str(tmp_path)
    )
    step = ShellStep(installer=installer, desc="W", do_cmd="echo warn >&2", undo_cmd="true")
    step.do()
    assert output.kinds("err") == ["warn\n"]


def test_shell_step_failure_raises(tmp_path):
    output = RecordingOutput()
    installer = BaseK8sInstaller(
        step_provider=Ubuntu20_4K8s1_22(), output_builder=output, bundle_path=str(tmp_path)
    )
    step = ShellStep(installer=installer, desc="F", do_cmd="exit 3", undo_cmd="true")
    with pytest.raises(subprocess.CalledProcessError) as excinfo:
        step.do()
    assert excinfo.value.returncode == 3
    assert len(output.kinds("err")) == 1


def test_counter_counts_all_kinds():
    counter = OutputBuilderCounter()
    counter.out("a")
    counter.err("b")
    counter.cmd("c")
    counter.desc("d")
    counter.msg("e")
    assert counter.log_called_cnt == 5