#!/usr/bin/env python3
"""
KVM Control CLI - Command line interface for the streaming backend.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .config import Config, get_config_paths, get_local_ip, reload_config
from .errors import ConfigFieldError, InvalidTransition, KvmControlError
from .reconciler import CODEC_SELECTORS
from .session import SessionController, create_controller


def setup_logging(config: Config, verbose: bool = False) -> None:
    """Configure root logging from the config file level or --verbose."""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def load_cli_config(args) -> Config:
    """Load config and apply global CLI overrides."""
    config = reload_config(Path(args.config) if args.config else None)
    if args.backend:
        config.set("backend", "endpoint", args.backend)
    return config


def apply_start_options(controller: SessionController, args) -> None:
    """Apply start flags through the reconciler, preset first."""
    reconciler = controller.reconciler

    if args.preset:
        if not reconciler.apply_preset(args.preset):
            print(f"ℹ️  Unknown preset '{args.preset}', keeping current settings")

    if args.codec:
        reconciler.set_field(f"use_{args.codec}", True)
    if args.monitor is not None:
        reconciler.set_field("selected_monitor", args.monitor)
    if args.encryption is not None:
        reconciler.set_field("encryption_enabled", args.encryption)
    if args.audio is not None:
        reconciler.set_field("use_webrtc", args.audio)
    if args.framerate is not None:
        reconciler.set_field("framerate", args.framerate)
    if args.video_bitrate is not None:
        reconciler.set_field("video_bitrate", args.video_bitrate)
    if args.audio_bitrate is not None:
        reconciler.set_field("audio_bitrate", args.audio_bitrate)


async def _start(config: Config, args) -> int:
    async with create_controller(config) as controller:
        try:
            apply_start_options(controller, args)
        except ConfigFieldError as e:
            print(f"❌ {e}")
            return 1

        if controller.is_running:
            print(f"❌ Server is already running at {controller.server_url}")
            print(f"   Run 'kvm-control stop' first")
            return 1

        port = args.port or config.port
        try:
            await controller.start(port)
        except KvmControlError:
            print(f"❌ {controller.error_message}")
            return 1

        print(f"✅ Server started on port {port}")
        print(f"   URL: {controller.connection_url()}")
        return 0


async def _stop(config: Config, args) -> int:
    async with create_controller(config) as controller:
        try:
            await controller.stop()
        except InvalidTransition:
            print("ℹ️  Server is not running")
            return 0
        except KvmControlError:
            print(f"❌ {controller.error_message}")
            return 1

        print("✅ Server stopped")
        return 0


async def _status(config: Config, args) -> int:
    async with create_controller(config) as controller:
        state = controller.state

        if controller.is_running:
            print(f"✅ Server is running (port {state.port})")
            print(f"   URL: {controller.connection_url()}")
            return 0

        if controller.error_message:
            print(f"❌ {controller.error_message}")
        else:
            print("❌ Server is not running")
        return 1


async def _url(config: Config, args) -> int:
    async with create_controller(config) as controller:
        if args.preset:
            controller.reconciler.apply_preset(args.preset)

        url = controller.connection_url()
        if not url:
            print("❌ Server is not running")
            return 1

        print(url)
        return 0


async def _monitors(config: Config, args) -> int:
    async with create_controller(config) as controller:
        registry = controller.monitors

        if registry.last_error:
            print(f"❌ Failed to load monitors: {registry.last_error}")
            return 1

        if not len(registry):
            print("ℹ️  No monitors reported")
            return 0

        selected = controller.reconciler.config.selected_monitor
        print("🖥️  Monitors:")
        for index, monitor in enumerate(registry.monitors):
            marker = "*" if index == selected else " "
            primary = " (primary)" if monitor.is_primary else ""
            print(f"   [{marker}] {index}: {monitor.name} {monitor.resolution}{primary}")
        return 0


async def _logs(config: Config, args) -> int:
    async with create_controller(config) as controller:
        try:
            debug_log, error_log = await controller.get_logs()
        except KvmControlError as e:
            print(f"❌ Failed to read logs: {e}")
            return 1

        print("=== Debug log ===")
        print(debug_log)
        print("=== Error log ===")
        print(error_log)
        return 0


def cmd_start(args) -> int:
    """Start the server."""
    return asyncio.run(_start(load_cli_config(args), args))


def cmd_stop(args) -> int:
    """Stop the server."""
    return asyncio.run(_stop(load_cli_config(args), args))


def cmd_status(args) -> int:
    """Check server status."""
    return asyncio.run(_status(load_cli_config(args), args))


def cmd_url(args) -> int:
    """Print the client connection URL."""
    return asyncio.run(_url(load_cli_config(args), args))


def cmd_monitors(args) -> int:
    """List monitors."""
    return asyncio.run(_monitors(load_cli_config(args), args))


def cmd_logs(args) -> int:
    """Print backend logs."""
    return asyncio.run(_logs(load_cli_config(args), args))


def cmd_presets(args) -> int:
    """List presets."""
    config = load_cli_config(args)
    controller = create_controller(config)

    print("🎛️  Presets:")
    for preset in controller.reconciler.presets:
        values = preset.values
        if not any(name in values for name in CODEC_SELECTORS):
            codec = "codec unchanged"
        else:
            codec = "h265" if values.get("use_h265") else "av1" if values.get("use_av1") else "h264"
        print(
            f"   - {preset.name}: {codec}, {values.get('framerate', '-')} fps, "
            f"video {values.get('video_bitrate', '-')} kbps, audio {values.get('audio_bitrate', '-')} kbps"
        )
    return 0


def cmd_ip(args) -> int:
    """Show local IP address."""
    config = load_cli_config(args)
    ip = get_local_ip()
    print(f"📍 Local IP: {ip}")
    print(f"   URL: http://{ip}:{config.port}/kvm")
    return 0


def cmd_config(args) -> int:
    """Show current configuration."""
    config = load_cli_config(args)
    controller = create_controller(config)
    settings = controller.reconciler.config

    print("📝 Configuration:")
    print()

    # Show config file locations
    print("   Config file search paths:")
    for path in get_config_paths():
        exists = "✓" if path.exists() else " "
        print(f"   [{exists}] {path}")
    print()

    print("   Current settings:")
    print(f"   - Backend: {config.backend_endpoint}")
    print(f"   - Port: {config.port}")
    print(f"   - Preset: {config.preset}")
    print(f"   - Codec: {settings.selected_codec}")
    print(f"   - Framerate: {settings.framerate} fps")
    print(f"   - Video bitrate: {settings.video_bitrate} kbps")
    print(f"   - Audio bitrate: {settings.audio_bitrate} kbps")
    print(f"   - Audio (WebRTC): {settings.use_webrtc}")
    print(f"   - Encryption: {settings.encryption_enabled}")
    print(f"   - Hardware acceleration: {settings.hardware_acceleration}")
    print(f"   - Poll interval: {config.poll_interval}s")

    return 0


def cmd_panel(args) -> int:
    """Run the HTTP control panel."""
    from .server import run_server

    config = load_cli_config(args)
    if args.host:
        config.set("panel", "host", args.host)
    if args.port:
        config.set("panel", "port", args.port)

    run_server(config)
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="kvm-control",
        description="Control surface for the KVM streaming backend",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  kvm-control start                        # Start with configured settings
  kvm-control start --preset lowBandwidth  # Start with a preset
  kvm-control start --codec h265 -m 1      # H.265 on the second monitor
  kvm-control stop                         # Stop the server
  kvm-control status                       # Check if running
  kvm-control url                          # Print the client URL
  kvm-control panel                        # Run the HTTP control panel
        """
    )
    parser.add_argument("--config", "-c", type=str, help="Path to config.yaml")
    parser.add_argument("--backend", "-b", type=str, help="Backend endpoint URL")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Start command
    start_parser = subparsers.add_parser("start", help="Start the server")
    start_parser.add_argument("--port", "-p", type=int, help="Port number (default: 9921)")
    start_parser.add_argument("--preset", type=str, help="Preset to apply before starting")
    start_parser.add_argument("--codec", choices=["h264", "h265", "av1"], help="Video codec")
    start_parser.add_argument("--monitor", "-m", type=int, help="Monitor index")
    start_parser.add_argument("--framerate", "-f", type=int, help="Frames per second (1-60)")
    start_parser.add_argument("--video-bitrate", type=int, help="Video bitrate in kbps")
    start_parser.add_argument("--audio-bitrate", type=int, help="Audio bitrate in kbps")
    start_parser.add_argument("--encryption", action=argparse.BooleanOptionalAction, help="Encrypt the stream")
    start_parser.add_argument("--audio", action=argparse.BooleanOptionalAction, help="Stream audio over WebRTC")
    start_parser.set_defaults(func=cmd_start)

    # Stop command
    stop_parser = subparsers.add_parser("stop", help="Stop the server")
    stop_parser.set_defaults(func=cmd_stop)

    # Status command
    status_parser = subparsers.add_parser("status", help="Check server status")
    status_parser.set_defaults(func=cmd_status)

    # URL command
    url_parser = subparsers.add_parser("url", help="Print the client connection URL")
    url_parser.add_argument("--preset", type=str, help="Preset to build the URL with")
    url_parser.set_defaults(func=cmd_url)

    # Monitors command
    monitors_parser = subparsers.add_parser("monitors", help="List available monitors")
    monitors_parser.set_defaults(func=cmd_monitors)

    # Presets command
    presets_parser = subparsers.add_parser("presets", help="List presets")
    presets_parser.set_defaults(func=cmd_presets)

    # Logs command
    logs_parser = subparsers.add_parser("logs", help="Show backend logs")
    logs_parser.set_defaults(func=cmd_logs)

    # IP command
    ip_parser = subparsers.add_parser("ip", help="Show local IP address")
    ip_parser.set_defaults(func=cmd_ip)

    # Config command
    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.set_defaults(func=cmd_config)

    # Panel command
    panel_parser = subparsers.add_parser("panel", help="Run the HTTP control panel")
    panel_parser.add_argument("--host", type=str, help="Bind address")
    panel_parser.add_argument("--port", "-p", type=int, help="Panel port (default: 9930)")
    panel_parser.set_defaults(func=cmd_panel)

    # Parse args
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(load_cli_config(args), args.verbose)

    try:
        return args.func(args)
    except ConfigFieldError as e:
        print(f"❌ Invalid settings: {e}")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
