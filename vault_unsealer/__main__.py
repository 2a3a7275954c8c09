from vault_unsealer.cli import main

main()
