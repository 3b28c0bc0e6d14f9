"""Shell bodies for each provisioning phase.

Conventions shared by every script:
- exit 2 (or a line starting with ``CONFIG:`` on stderr) means missing or invalid input;
- apt/dpkg lock contention is reported with the dpkg wording so it is retried;
- every step is safe to repeat unless its phase says otherwise.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from fleet_engine.core.models import Node, WorkloadSpec

NODE_EXPORTER_VERSION = "1.7.0"
DOCKER_SUBNET = "172.28.0.0/16"
MESH_CIDR = "100.64.0.0/10"
COMPOSE_ROOT = "/opt/depin"
APT_LOCK_WAIT = 120

BASE_PACKAGES = [
    "curl", "wget", "git", "htop", "iotop", "net-tools", "jq", "ca-certificates",
    "gnupg", "lsb-release", "apt-transport-https", "unattended-upgrades",
    "apt-listchanges", "smartmontools", "ufw", "fail2ban", "logrotate", "chrony",
    "rsync", "unzip",
]

PRELUDE = f"""\
set -euo pipefail
export DEBIAN_FRONTEND=noninteractive

config_error() {{ echo "CONFIG: $*" >&2; exit 2; }}

wait_for_apt() {{
  local waited=0
  while fuser /var/lib/dpkg/lock-frontend /var/lib/apt/lists/lock >/dev/null 2>&1; do
    if (( waited >= {APT_LOCK_WAIT} )); then
      echo "Could not get lock /var/lib/dpkg/lock-frontend after {APT_LOCK_WAIT}s" >&2
      exit 1
    fi
    sleep 5
    waited=$((waited + 5))
  done
}}

mesh_address() {{ tailscale ip -4 2>/dev/null | head -n1; }}
"""


@dataclass
class ScriptContext:
    """Values a phase script is rendered with."""

    node: Node
    ssh_user: str = "zpin"
    storage_mount: str = "/mnt/depin-storage"
    storage_disk: str = "/dev/sda"
    tailscale_auth_key: Optional[str] = None
    workload: Optional[WorkloadSpec] = None
    compose: Optional[str] = None
    scrape_targets: List[str] = field(default_factory=list)


# -------------------------
# COMMON PHASES
# -------------------------

def base_script(ctx: ScriptContext) -> List[str]:
    lines = []
    if ctx.node.hostname:
        lines += [
            f'if [[ "$(hostname)" != "{ctx.node.hostname}" ]]; then',
            f'  hostnamectl set-hostname "{ctx.node.hostname}"',
            f'  sed -i "s/127.0.1.1.*/127.0.1.1\\t{ctx.node.hostname}/" /etc/hosts',
            "fi",
        ]
    lines += [
        "wait_for_apt",
        "apt-get update -qq",
        "apt-get upgrade -y -qq",
        "apt-get install -y -qq " + " ".join(BASE_PACKAGES),
        "systemctl enable --now chrony",
        "cat > /etc/apt/apt.conf.d/20auto-upgrades <<'EOF'",
        'APT::Periodic::Update-Package-Lists "1";',
        'APT::Periodic::Unattended-Upgrade "1";',
        'APT::Periodic::AutocleanInterval "7";',
        "EOF",
    ]
    return lines


SSHD_HARDENING = """\
PasswordAuthentication no
ChallengeResponseAuthentication no
PermitRootLogin no
PubkeyAuthentication yes
MaxAuthTries 3
MaxSessions 5
LoginGraceTime 30
X11Forwarding no
AllowAgentForwarding no
AllowTcpForwarding no
LogLevel VERBOSE"""


def secure_script(ctx: ScriptContext) -> List[str]:
    lines = [
        "ufw --force reset >/dev/null",
        "ufw default deny incoming",
        "ufw default allow outgoing",
    ]
    for lan in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", MESH_CIDR):
        lines.append(f'ufw allow from {lan} to any port 22 proto tcp comment "SSH"')
    for port in (9090, 9100, 3000, 9093):
        lines.append(f'ufw allow from {MESH_CIDR} to any port {port} proto tcp')
    lines += [
        "ufw --force enable",
        "cat > /etc/ssh/sshd_config.d/99-depin-hardening.conf <<'EOF'",
        SSHD_HARDENING,
        "EOF",
        "if ! sshd -t; then",
        "  rm -f /etc/ssh/sshd_config.d/99-depin-hardening.conf",
        '  config_error "sshd rejected the hardening drop-in"',
        "fi",
        "systemctl restart ssh 2>/dev/null || systemctl restart sshd",
        "systemctl enable --now fail2ban",
    ]
    return lines


DAEMON_JSON = """\
{
  "log-driver": "json-file",
  "log-opts": {"max-size": "10m", "max-file": "3"},
  "storage-driver": "overlay2",
  "live-restore": true,
  "no-new-privileges": true,
  "icc": false,
  "userland-proxy": false
}"""


def container_script(ctx: ScriptContext) -> List[str]:
    return [
        "if ! command -v docker >/dev/null; then",
        "  wait_for_apt",
        "  curl -fsSL https://get.docker.com | sh",
        "fi",
        "mkdir -p /etc/docker",
        "cat > /etc/docker/daemon.json <<'EOF'",
        DAEMON_JSON,
        "EOF",
        "systemctl enable docker",
        "systemctl restart docker",
        f"usermod -aG docker {ctx.ssh_user} || true",
        "docker network inspect depin-net >/dev/null 2>&1 || "
        f"docker network create --driver bridge --subnet {DOCKER_SUBNET} depin-net",
        "docker compose version >/dev/null",
    ]


def network_script(ctx: ScriptContext) -> List[str]:
    up = ["tailscale up", "--accept-routes=false", "--advertise-exit-node=false"]
    if ctx.node.hostname:
        up.append(f"--hostname={ctx.node.hostname}")
    if ctx.tailscale_auth_key:
        up.append(f"--authkey={ctx.tailscale_auth_key}")
    return [
        "if ! command -v tailscale >/dev/null; then",
        "  curl -fsSL https://tailscale.com/install.sh | sh",
        "fi",
        "systemctl enable --now tailscaled",
        "state=$(tailscale status --json 2>/dev/null | jq -r '.BackendState' || echo unknown)",
        'if [[ "$state" != "Running" ]]; then',
        "  " + " ".join(up),
        "fi",
        "for _ in $(seq 1 30); do",
        '  [[ -n "$(mesh_address)" ]] && break',
        "  sleep 2",
        "done",
        '[[ -n "$(mesh_address)" ]] || config_error "tailscale enrollment needs an auth key or interactive login"',
        "tailscale set --advertise-exit-node=false",
        'ufw allow in on tailscale0 to any port 22 proto tcp comment "SSH via Tailscale"',
    ]


# -------------------------
# ROLE PHASES
# -------------------------

def exporter_script(ctx: ScriptContext) -> List[str]:
    version = NODE_EXPORTER_VERSION
    return [
        'case "$(dpkg --print-architecture)" in',
        "  arm64) arch=arm64 ;;",
        "  armhf) arch=armv7 ;;",
        "  amd64) arch=amd64 ;;",
        '  *) config_error "unsupported architecture $(dpkg --print-architecture)" ;;',
        "esac",
        f'if ! /usr/local/bin/node_exporter --version 2>&1 | grep -q "version {version}"; then',
        f'  tarball="node_exporter-{version}.linux-${{arch}}.tar.gz"',
        f'  curl -fsSL -o "/tmp/$tarball" "https://github.com/prometheus/node_exporter/releases/download/v{version}/$tarball"',
        '  tar xzf "/tmp/$tarball" -C /tmp',
        f'  install -m 0755 "/tmp/node_exporter-{version}.linux-${{arch}}/node_exporter" /usr/local/bin/node_exporter',
        f'  rm -rf "/tmp/$tarball" "/tmp/node_exporter-{version}.linux-${{arch}}"',
        "fi",
        "id node_exporter >/dev/null 2>&1 || useradd --no-create-home --shell /bin/false node_exporter",
        'addr="$(mesh_address)"',
        '[[ -n "$addr" ]] || config_error "node exporter binds to the mesh address; network phase incomplete"',
        "cat > /etc/systemd/system/node_exporter.service <<EOF",
        "[Unit]",
        "Description=Prometheus Node Exporter",
        "After=network-online.target tailscaled.service",
        "[Service]",
        "User=node_exporter",
        "ExecStart=/usr/local/bin/node_exporter --web.listen-address=${addr}:9100 --collector.systemd",
        "Restart=always",
        "[Install]",
        "WantedBy=multi-user.target",
        "EOF",
        "systemctl daemon-reload",
        "systemctl enable node_exporter",
        "systemctl restart node_exporter",
    ]


def storage_prep_script(ctx: ScriptContext) -> List[str]:
    mount, disk = ctx.storage_mount, ctx.storage_disk
    return [
        f'if mountpoint -q "{mount}"; then',
        f'  echo "{mount} already mounted"',
        "else",
        f'  [[ -b "{disk}" ]] || config_error "storage disk {disk} not present"',
        f'  part="{disk}1"; [[ -b "$part" ]] || part="{disk}p1"',
        '  if [[ ! -b "$part" ]]; then',
        f'    parted -s "{disk}" mklabel gpt',
        f'    parted -s "{disk}" mkpart primary ext4 1MiB 100%',
        "    udevadm settle",
        f'    part="{disk}1"; [[ -b "$part" ]] || part="{disk}p1"',
        "  fi",
        '  label="$(blkid -s LABEL -o value "$part" || true)"',
        '  fstype="$(blkid -s TYPE -o value "$part" || true)"',
        '  if [[ -z "$fstype" ]]; then',
        '    mkfs.ext4 -L depin-storage -m 1 "$part"',
        '  elif [[ "$label" != "depin-storage" ]]; then',
        '    config_error "$part holds a $fstype filesystem not labelled depin-storage; refusing to format"',
        "  fi",
        f'  mkdir -p "{mount}"',
        '  uuid="$(blkid -s UUID -o value "$part")"',
        f'  sed -i "\\|{mount}|d" /etc/fstab',
        f'  echo "UUID=$uuid {mount} ext4 defaults,noatime,nofail 0 2" >> /etc/fstab',
        "  mount -a",
        "fi",
        f'mkdir -p "{mount}/storj-data" "{mount}/storj-identity"',
        f'chown -R {ctx.ssh_user}:{ctx.ssh_user} "{mount}/storj-data" || true',
    ]


def storage_identity_script(ctx: ScriptContext) -> List[str]:
    identity_dir = f"{ctx.storage_mount}/storj-identity"
    return [
        f'if [[ -f "{identity_dir}/storagenode/identity.key" ]]; then',
        f'  config_error "identity already present in {identity_dir}; refusing to overwrite"',
        "fi",
        'case "$(dpkg --print-architecture)" in',
        "  arm64) arch=arm64 ;; armhf) arch=arm ;; amd64) arch=amd64 ;;",
        '  *) config_error "unsupported architecture" ;;',
        "esac",
        "cd /tmp",
        'curl -fsSL -o identity.zip "https://github.com/storj/storj/releases/latest/download/identity_linux_${arch}.zip"',
        "unzip -o identity.zip",
        f'./identity create storagenode --identity-dir "{identity_dir}"',
        f'[[ -f "{identity_dir}/storagenode/identity.cert" ]] || exit 1',
        "rm -f identity identity.zip",
    ]


def deploy_script(ctx: ScriptContext) -> List[str]:
    spec = ctx.workload
    directory = f"{COMPOSE_ROOT}/{spec.name}"
    lines = [f'mkdir -p "{directory}"']

    if spec.role.value == "storage":
        lines += [
            f'mountpoint -q "{ctx.storage_mount}" || config_error "storage not mounted at {ctx.storage_mount}"',
            f'[[ -f "{directory}/.env" ]] || config_error "{directory}/.env with WALLET, EMAIL and STORAGE is required"',
            f'grep -q "^WALLET=0x[0-9a-fA-F]\\{{40\\}}" "{directory}/.env" || config_error "WALLET in {directory}/.env is not set"',
        ]

    if ctx.scrape_targets:
        targets = ", ".join(f"'{target}'" for target in ctx.scrape_targets)
        lines += [
            f'mkdir -p "{directory}/prometheus" "{directory}/alertmanager"',
            f"cat > \"{directory}/prometheus/prometheus.yml\" <<'EOF'",
            "global:",
            "  scrape_interval: 30s",
            "scrape_configs:",
            "  - job_name: node",
            "    static_configs:",
            f"      - targets: [{targets}]",
            "EOF",
        ]

    lines += [
        f"cat > \"{directory}/docker-compose.yml\" <<'EOF'",
        ctx.compose.rstrip("\n"),
        "EOF",
        f'cd "{directory}"',
        'export MESH_ADDRESS="$(mesh_address)"',
        "docker compose pull --quiet",
        "docker compose up -d --remove-orphans",
    ]
    return lines


def standby_script(ctx: ScriptContext) -> List[str]:
    return [
        "command -v nvidia-smi >/dev/null || config_error \"NVIDIA driver not installed\"",
        "nvidia-smi --query-gpu=name,memory.total --format=csv,noheader",
        "if ! dpkg -s nvidia-container-toolkit >/dev/null 2>&1; then",
        "  curl -fsSL https://nvidia.github.io/libnvidia-container/gpgkey"
        " | gpg --dearmor --yes -o /usr/share/keyrings/nvidia-container-toolkit-keyring.gpg",
        "  curl -fsSL https://nvidia.github.io/libnvidia-container/stable/deb/nvidia-container-toolkit.list"
        " | sed 's#deb https://#deb [signed-by=/usr/share/keyrings/nvidia-container-toolkit-keyring.gpg] https://#g'"
        " > /etc/apt/sources.list.d/nvidia-container-toolkit.list",
        "  wait_for_apt",
        "  apt-get update -qq",
        "  apt-get install -y -qq nvidia-container-toolkit",
        "  nvidia-ctk runtime configure --runtime=docker",
        "  systemctl restart docker",
        "fi",
        "running=$(docker ps --filter label=depin.workload=true -q | wc -l)",
        '[[ "$running" -eq 0 ]] || { echo "standby node runs $running workload container(s)" >&2; exit 1; }',
    ]


def verify_script(ctx: ScriptContext) -> List[str]:
    lines = [
        "docker info >/dev/null",
        "systemctl is-active --quiet tailscaled",
        'ufw status | grep -q "Status: active"',
        '[[ -n "$(mesh_address)" ]]',
    ]
    spec = ctx.workload
    if spec is not None and not spec.standby_only:
        lines += [
            "systemctl is-active --quiet node_exporter",
            f"docker ps --filter label=depin.role={spec.role.value} --format '{{{{.Names}}}}' | grep -q .",
        ]
    return lines
