from treemerge.cli import main

raise SystemExit(main())
