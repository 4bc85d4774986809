from selfupgrade.cli import main

raise SystemExit(main())
