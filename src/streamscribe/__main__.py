from streamscribe.main import main

raise SystemExit(main())
