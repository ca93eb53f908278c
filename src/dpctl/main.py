#!/usr/bin/env python3
"""
Device Plugin CLI

A command-line interface for managing Intel device plugin resources.
Makes the per-family DevicePlugin resources feel like native Kubernetes primitives.
"""

import argparse
import json
import sys
import time

import yaml
from kubernetes.client.rest import ApiException

from deviceplugin_operator import crd
from deviceplugin_operator.config import Config
from deviceplugin_operator.conversion import convert
from deviceplugin_operator.errors import DevicePluginError
from deviceplugin_operator.k8s import ResourceStore


def get_store():
    """Create a resource store, exiting if no cluster configuration is found."""
    try:
        return ResourceStore()
    except Exception as e:
        print(f"Error loading Kubernetes config: {e}", file=sys.stderr)
        sys.exit(1)


def parse_value(raw):
    """Parse a --set value: ints, booleans and comma lists, else a string."""
    if raw.lower() in ("true", "false"):
        return raw.lower() == "true"
    try:
        return int(raw)
    except ValueError:
        pass
    if "," in raw:
        return [item for item in raw.split(",") if item]
    return raw


def parse_pairs(pairs, what):
    """Turn ["key=value", ...] into a dict."""
    result = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid {what} '{pair}', expected key=value")
        result[key] = value
    return result


def build_deviceplugin(family, name, image, init_image="", node_selector=None, log_level=0, tunables=None):
    """Build a device plugin resource body."""
    definition = crd.get_family(family)
    allowed = {field for field, _flag, _kind in definition["tunables"]}
    if crd.supports_provisioning_config(family):
        allowed.add("provisioningConfig")

    spec = {
        "image": image,
        "logLevel": log_level,
    }
    if init_image:
        spec["initImage"] = init_image
    if node_selector:
        spec["nodeSelector"] = node_selector

    for field, value in (tunables or {}).items():
        if field not in allowed:
            raise ValueError(
                f"{definition['kind']} has no field '{field}'. Allowed: {sorted(allowed)}"
            )
        spec[field] = value

    return {
        "apiVersion": crd.API_VERSION,
        "kind": definition["kind"],
        "metadata": {"name": name},
        "spec": spec,
    }


def cmd_create(args):
    """Create a device plugin resource."""
    try:
        node_selector = parse_pairs(args.node_selector, "node selector")
        tunables = {k: parse_value(v) for k, v in parse_pairs(args.set, "setting").items()}
        body = build_deviceplugin(
            args.family,
            args.name,
            args.image,
            init_image=args.init_image,
            node_selector=node_selector,
            log_level=args.log_level,
            tunables=tunables,
        )
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    store = get_store()
    kind = body["kind"]
    try:
        store.create_resource(args.family, body)
        print(f"✓ {kind} '{args.name}' created")
    except ApiException as e:
        if e.status == 409:
            print(f"✗ {kind} '{args.name}' already exists", file=sys.stderr)
        else:
            print(f"✗ Failed to create {kind}: {e}", file=sys.stderr)
            if e.body:
                try:
                    error_body = json.loads(e.body)
                    if "message" in error_body:
                        print(f"  {error_body['message']}", file=sys.stderr)
                except ValueError:
                    pass
        sys.exit(1)

    print(f"\nWatch status: kubectl get {crd.get_family(args.family)['plural']} {args.name} -w")
    print(f"Check pods: kubectl get pods -l app={crd.plugin_name(args.family)} -n {Config.NAMESPACE}")


def cmd_get(args):
    """Get a device plugin resource and its status."""
    store = get_store()
    kind = crd.get_family(args.family)["kind"]

    try:
        resource = store.get_resource(args.family, args.name)
    except ApiException as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)

    if resource is None:
        print(f"✗ {kind} '{args.name}' not found", file=sys.stderr)
        sys.exit(1)

    if args.output == "json":
        print(json.dumps(resource, indent=2))
        return
    if args.output == "yaml":
        print(yaml.safe_dump(resource, default_flow_style=False), end="")
        return

    spec = resource.get("spec", {})
    status = resource.get("status") or {}
    controlled = status.get("controlledDaemonSet") or {}

    print(f"{kind}: {args.name}")
    print(f"\nSpec:")
    print(f"  Image: {spec.get('image', 'N/A')}")
    print(f"  Init image: {spec.get('initImage') or 'N/A'}")
    print(f"  Log level: {spec.get('logLevel', 0)}")
    print(f"  Node selector: {spec.get('nodeSelector') or 'N/A'}")
    for field, _flag, _kind in crd.get_family(args.family)["tunables"]:
        if spec.get(field) is not None:
            print(f"  {field}: {spec[field]}")
    if spec.get("provisioningConfig"):
        print(f"  Provisioning config: {spec['provisioningConfig']}")

    print(f"\nStatus:")
    if controlled:
        print(f"  DaemonSet: {controlled.get('namespace')}/{controlled.get('name')} ({controlled.get('uid')})")
    else:
        print(f"  DaemonSet: N/A")
    print(f"  Ready: {status.get('numberReady', 0)}/{status.get('desiredNumberScheduled', 0)}")
    if status.get("nodeNames"):
        print(f"  Nodes: {', '.join(status['nodeNames'])}")
    for condition in status.get("conditions", []):
        print(f"  {condition.get('type')}: {condition.get('status')} ({condition.get('reason')}) {condition.get('message', '')}")


def cmd_list(args):
    """List device plugin resources."""
    store = get_store()
    families = [args.family] if args.family else sorted(crd.FAMILIES)

    rows = []
    for family in families:
        try:
            items = store.list_resources(family)
        except ApiException as e:
            if e.status == 404:
                # CRD for this family is not installed
                continue
            print(f"✗ Error: {e}", file=sys.stderr)
            sys.exit(1)
        for item in items:
            status = item.get("status") or {}
            rows.append(
                (
                    item.get("metadata", {}).get("name", "N/A"),
                    item.get("kind", crd.get_family(family)["kind"]),
                    f"{status.get('numberReady', 0)}/{status.get('desiredNumberScheduled', 0)}",
                    item.get("spec", {}).get("image", "N/A"),
                )
            )

    if not rows:
        print("No device plugins found.")
        return

    print(f"{'NAME':<30} {'KIND':<20} {'READY':<8} {'IMAGE':<40}")
    print("-" * 100)
    for name, kind, ready, image in rows:
        print(f"{name:<30} {kind:<20} {ready:<8} {image:<40}")


def cmd_delete(args):
    """Delete a device plugin resource. Its DaemonSet is garbage collected."""
    store = get_store()
    kind = crd.get_family(args.family)["kind"]

    try:
        if not store.delete_resource(args.family, args.name):
            print(f"✗ {kind} '{args.name}' not found", file=sys.stderr)
            sys.exit(1)
    except ApiException as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"✓ {kind} '{args.name}' deleted")


def cmd_watch(args):
    """Watch a device plugin until its DaemonSet is fully ready."""
    store = get_store()
    kind = crd.get_family(args.family)["kind"]

    print(f"Watching {kind} '{args.name}' (Ctrl+C to stop)...")
    print()

    try:
        while True:
            try:
                resource = store.get_resource(args.family, args.name)
            except ApiException as e:
                print(f"\n✗ Error: {e}", file=sys.stderr)
                sys.exit(1)

            if resource is None:
                print(f"\n✗ {kind} '{args.name}' not found", file=sys.stderr)
                break

            status = resource.get("status") or {}
            desired = status.get("desiredNumberScheduled", 0)
            ready = status.get("numberReady", 0)
            controlled = status.get("controlledDaemonSet")

            print(f"\r[{ready}/{desired} ready] {controlled.get('name') if controlled else 'pending'}", end="", flush=True)

            if controlled and desired > 0 and ready == desired:
                print()
                break

            time.sleep(2)

    except KeyboardInterrupt:
        print("\nStopped watching.")


def cmd_convert(args):
    """Convert device plugin manifests in a YAML file to another API version."""
    try:
        with open(args.file) as f:
            documents = [doc for doc in yaml.safe_load_all(f) if doc]
    except (OSError, yaml.YAMLError) as e:
        print(f"✗ Cannot read {args.file}: {e}", file=sys.stderr)
        sys.exit(1)

    for index, doc in enumerate(documents, 1):
        if not isinstance(doc, dict):
            print(f"✗ Document {index} in {args.file} is not a resource manifest", file=sys.stderr)
            sys.exit(1)

    try:
        converted = [convert(doc, to_version=args.to) for doc in documents]
    except DevicePluginError as e:
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    print(yaml.safe_dump_all(converted, default_flow_style=False), end="")


def main(argv=None):
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Device Plugin CLI - Manage Intel device plugin resources like native K8s resources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Deploy the SGX plugin with an init image
  %(prog)s create sgx sgxdeviceplugin-sample --image intel/intel-sgx-plugin:0.26.0 \\
      --init-image intel/intel-sgx-initcontainer:0.26.0 --set enclaveLimit=110

  # Deploy the DSA plugin with a provisioning config
  %(prog)s create dsa dsadeviceplugin-sample --image intel/intel-dsa-plugin:0.26.0 \\
      --set sharedDevNum=10 --set provisioningConfig=intel-dsa-config

  # Show status
  %(prog)s get sgx sgxdeviceplugin-sample

  # List all device plugins
  %(prog)s list

  # Upgrade old manifests
  %(prog)s convert old-plugins.yaml --to v1
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    families = sorted(crd.FAMILIES)

    # Create command
    create_parser = subparsers.add_parser("create", help="Create a device plugin")
    create_parser.add_argument("family", choices=families, help="Device family")
    create_parser.add_argument("name", help="Resource name")
    create_parser.add_argument("--image", required=True, help="Plugin image")
    create_parser.add_argument("--init-image", default="", help="Init container image (optional)")
    create_parser.add_argument(
        "--node-selector",
        action="append",
        metavar="KEY=VALUE",
        help=f"Node selector entry, repeatable (default: {Config.ARCH_LABEL}={Config.DEFAULT_ARCH})",
    )
    create_parser.add_argument("--log-level", type=int, default=0, help="Plugin log level (default: 0)")
    create_parser.add_argument(
        "--set",
        action="append",
        metavar="FIELD=VALUE",
        help="Family specific field, e.g. sharedDevNum=10, repeatable",
    )
    create_parser.set_defaults(func=cmd_create)

    # Get command
    get_parser = subparsers.add_parser("get", help="Get device plugin status")
    get_parser.add_argument("family", choices=families, help="Device family")
    get_parser.add_argument("name", help="Resource name")
    get_parser.add_argument(
        "--output", "-o", choices=["json", "yaml", "wide"], default="wide", help="Output format"
    )
    get_parser.set_defaults(func=cmd_get)

    # List command
    list_parser = subparsers.add_parser("list", help="List device plugins")
    list_parser.add_argument("family", nargs="?", choices=families, help="Only this device family")
    list_parser.set_defaults(func=cmd_list)

    # Watch command
    watch_parser = subparsers.add_parser("watch", help="Watch a device plugin rollout")
    watch_parser.add_argument("family", choices=families, help="Device family")
    watch_parser.add_argument("name", help="Resource name")
    watch_parser.set_defaults(func=cmd_watch)

    # Delete command
    delete_parser = subparsers.add_parser("delete", help="Delete a device plugin")
    delete_parser.add_argument("family", choices=families, help="Device family")
    delete_parser.add_argument("name", help="Resource name")
    delete_parser.set_defaults(func=cmd_delete)

    # Convert command
    convert_parser = subparsers.add_parser(
        "convert", help="Convert device plugin manifests between API versions"
    )
    convert_parser.add_argument("file", help="YAML file with one or more manifests")
    convert_parser.add_argument(
        "--to",
        choices=[crd.VERSION] + crd.PREVIOUS_VERSIONS,
        default=crd.VERSION,
        help=f"Target version (default: {crd.VERSION})",
    )
    convert_parser.set_defaults(func=cmd_convert)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
