"""
CLI 메인 인터페이스
Click 및 Rich 기반 피어 관리 명령
"""

import sys
from datetime import datetime
import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from . import __version__
from .config import Config
from .errors import WgAgentError, STAGE_ALLOCATION, STAGE_PERSISTENCE, STAGE_SYNC
from .keys import WgKeyPairProvider
from .logger import init_logger, get_logger
from .models import STATUS_ONLINE, STATUS_OFFLINE
from .provision import provision_server, resolve_endpoint
from .registry import PeerRegistry
from .store import ConfigStore
from .sync import RuntimeSynchronizer, WgInterface

console = Console()

RETRY_HINTS = {
    STAGE_ALLOCATION: "다른 이름/주소를 지정하거나 서브넷을 확장하세요.",
    STAGE_PERSISTENCE: "파일 권한과 디스크 상태를 확인한 뒤 'add <name> --repair' 를 실행하세요.",
    STAGE_SYNC: "변경은 저장되었습니다. 서비스(wg-quick@<iface>) 상태를 확인한 뒤 'sync' 를 실행하세요.",
}

# remove 실패 시 피어는 이미 등록 해제된 상태
REMOVE_HINTS = {
    **RETRY_HINTS,
    STAGE_PERSISTENCE: "피어는 등록 해제되었습니다. 피어 디렉토리에 남은 파일을 직접 삭제하고 필요하면 'sync' 를 실행하세요.",
}


def load_config(config_path, debug: bool) -> Config:
    """설정 로드 + 로거 초기화"""
    cfg = Config(config_path)
    init_logger(cfg.agent.log_dir, cfg.agent.log_level, debug)
    get_logger().debug(f"Loaded config from {cfg.config_path or 'defaults'}")
    return cfg


def build_store(cfg: Config) -> ConfigStore:
    return ConfigStore.from_settings(cfg.server)


def build_registry(cfg: Config) -> PeerRegistry:
    """설정으로부터 레지스트리 구성"""
    keys = WgKeyPairProvider(timeout=cfg.agent.sync_timeout)
    wg = WgInterface(cfg.server.interface, timeout=cfg.agent.sync_timeout)
    return PeerRegistry(
        store=build_store(cfg),
        keys=keys,
        synchronizer=RuntimeSynchronizer(wg),
        peer_settings=cfg.peers,
        endpoint_resolver=lambda: resolve_endpoint(cfg),
    )


def fail(error: WgAgentError, hints=RETRY_HINTS):
    """에러 출력 후 종료 코드 1"""
    get_logger().debug(f"{type(error).__name__}: {error.describe()}")
    console.print(f"[red]✗ {type(error).__name__}: {error.describe()}[/red]")
    hint = hints.get(error.stage)
    if hint and (error.partial or error.stage == STAGE_ALLOCATION):
        console.print(f"[yellow]{hint}[/yellow]")
    sys.exit(1)


def config_option(func):
    func = click.option('--debug', is_flag=True, help='디버그 모드')(func)
    func = click.option('--config', '-c', 'config_path', type=click.Path(exists=True),
                        help='설정 파일 경로')(func)
    return func


@click.group()
@click.version_option(version=__version__)
def cli():
    """WireGuard Peer Agent

    WireGuard 서버의 피어를 추가/삭제/조회하고 라이브 인터페이스와 동기화합니다.
    """
    pass


@cli.command()
@click.argument('output', type=click.Path(), default='./config.yaml')
def init(output):
    """샘플 설정 파일 생성"""
    cfg = Config(output)
    cfg.create_sample(output)
    console.print(f"[green]✓ 샘플 설정 파일 생성: {output}[/green]")
    console.print("[cyan]설정 파일을 편집한 후 다음 명령어로 서버를 준비하세요:[/cyan]")
    console.print(f"[cyan]  wg-peer-agent provision --config {output}[/cyan]")


@cli.command()
@config_option
def validate(config_path, debug):
    """설정 파일 및 서버 문서 유효성 검사"""
    cfg = load_config(config_path, debug)

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("항목", style="cyan")
    table.add_column("값")

    table.add_row("설정 파일", cfg.config_path or "[yellow]기본값[/yellow]")
    table.add_row("인터페이스", cfg.server.interface)
    table.add_row("서버 문서", cfg.server.server_config_path)
    table.add_row("피어 디렉토리", cfg.server.peer_dir)
    table.add_row("서브넷", cfg.server.subnet)
    table.add_row("엔드포인트", cfg.server.endpoint or "[yellow]자동 조회[/yellow]")
    live = WgInterface(cfg.server.interface, timeout=cfg.agent.sync_timeout).exists()
    table.add_row("라이브 인터페이스", "[green]up[/green]" if live else "[red]down[/red]")
    console.print(table)

    store = build_store(cfg)
    if not store.exists():
        console.print("[yellow]서버 문서가 아직 없습니다. provision 을 실행하세요.[/yellow]")
        return

    try:
        server = store.load_server_config()
    except WgAgentError as e:
        fail(e)
    console.print(f"[green]✓ 서버 문서가 유효합니다 (피어 {len(server.peers)}개)[/green]")


@cli.command()
@config_option
@click.option('--port', type=int, default=None, help='ListenPort (기본값: 설정값 또는 무작위)')
@click.option('--force', is_flag=True, help='기존 서버 문서 덮어쓰기')
def provision(config_path, debug, port, force):
    """서버 키와 서버 설정 문서 생성"""
    cfg = load_config(config_path, debug)
    store = build_store(cfg)
    keys = WgKeyPairProvider(timeout=cfg.agent.sync_timeout)

    if force and store.exists():
        console.print("[yellow]⚠ 기존 서버 문서를 덮어씁니다. 등록된 피어 정보가 사라집니다.[/yellow]")

    try:
        server = provision_server(store, keys, cfg, listen_port=port, force=force)
    except WgAgentError as e:
        fail(e)

    console.print(Panel.fit(
        f"[bold green]✓ 서버 프로비저닝 완료[/bold green]\n"
        f"주소: {server.address}\n"
        f"포트: {server.listen_port}/udp\n"
        f"공개키: {server.public_key}\n"
        f"서버 문서: {store.server_config_path}",
        border_style="green"
    ))
    console.print(f"[cyan]서비스 시작: systemctl enable --now wg-quick@{cfg.server.interface}[/cyan]")


@cli.command()
@config_option
@click.argument('name')
@click.argument('address', required=False)
@click.option('--repair', is_flag=True, help='부분 적용된 피어 복구 (키 재생성 없음)')
def add(config_path, debug, name, address, repair):
    """피어 추가"""
    cfg = load_config(config_path, debug)
    registry = build_registry(cfg)

    try:
        record = registry.add(name, address, repair=repair)
    except WgAgentError as e:
        fail(e)

    path = registry.store.client_paths(name)["config"]
    console.print(f"[green]✓ 피어 '{record.name}' {'복구' if repair else '추가'} 완료[/green]")
    console.print(f"  주소: {record.address}")
    console.print(f"  공개키: {record.public_key}")
    console.print(f"  클라이언트 설정: {path}")


@cli.command()
@config_option
@click.argument('name')
def remove(config_path, debug, name):
    """피어 삭제"""
    cfg = load_config(config_path, debug)
    registry = build_registry(cfg)

    try:
        registry.remove(name)
    except WgAgentError as e:
        fail(e, hints=REMOVE_HINTS)

    console.print(f"[green]✓ 피어 '{name}' 삭제 완료[/green]")


@cli.command(name="list")
@config_option
def list_peers(config_path, debug):
    """피어 목록 및 온라인 상태"""
    cfg = load_config(config_path, debug)
    registry = build_registry(cfg)

    try:
        statuses = registry.list()
    except WgAgentError as e:
        fail(e)

    if not statuses:
        console.print("[yellow]등록된 피어가 없습니다.[/yellow]")
        return

    table = Table(title=f"{cfg.server.interface} 피어", show_header=True, header_style="bold magenta")
    table.add_column("이름", style="cyan")
    table.add_column("주소")
    table.add_column("공개키")
    table.add_column("상태")
    table.add_column("마지막 핸드셰이크")

    colors = {STATUS_ONLINE: "green", STATUS_OFFLINE: "red"}
    for item in statuses:
        color = colors.get(item.status, "yellow")
        handshake = (
            datetime.fromtimestamp(item.latest_handshake).strftime("%Y-%m-%d %H:%M:%S")
            if item.latest_handshake else "-"
        )
        table.add_row(
            item.record.name,
            item.record.address,
            item.record.public_key[:16] + "...",
            f"[{color}]{item.status}[/{color}]",
            handshake,
        )

    console.print(table)


@cli.command()
@config_option
@click.argument('name')
def show(config_path, debug, name):
    """피어의 클라이언트 설정 출력"""
    cfg = load_config(config_path, debug)
    registry = build_registry(cfg)

    try:
        document = registry.show(name)
    except WgAgentError as e:
        fail(e)

    click.echo(document, nl=False)


@cli.command()
@config_option
def sync(config_path, debug):
    """저장된 피어 집합을 라이브 인터페이스에 반영"""
    cfg = load_config(config_path, debug)
    registry = build_registry(cfg)

    try:
        result = registry.sync()
    except WgAgentError as e:
        fail(e)

    if result.total_changes == 0:
        console.print(f"[green]✓ 이미 동기화되어 있습니다 (피어 {result.unchanged}개)[/green]")
    else:
        console.print(
            f"[green]✓ 동기화 완료: 추가 {result.added}, 변경 {result.updated}, "
            f"삭제 {result.removed}, 유지 {result.unchanged}[/green]"
        )


def main():
    """메인 엔트리 포인트"""
    cli()


if __name__ == '__main__':
    main()
